"""
QIIME 2 amplicon conda environment: detect, and create when missing.
"""
from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import json, logging, platform, subprocess

from ..exec.local import run_cmd
from .base import ExternalStep, Runner, which_or_raise

log = logging.getLogger(__name__)

QIIME_RELEASE = "2024.10"
_DISTRO_URL = "https://data.qiime2.org/distro/amplicon/qiime2-amplicon-{release}-py310-{os}-conda.yml"


def distro_url(system: Optional[str] = None, release: str = QIIME_RELEASE) -> str:
    """macOS gets the osx build; everything else (Linux, WSL) the linux build."""
    system = system or platform.system()
    return _DISTRO_URL.format(release=release, os="osx" if system == "Darwin" else "linux")


def is_apple_silicon(system: Optional[str] = None, machine: Optional[str] = None) -> bool:
    return (system or platform.system()) == "Darwin" and (machine or platform.machine()) in ("arm64", "aarch64")


def list_envs() -> List[Path]:
    which_or_raise("conda")
    out = subprocess.run(["conda", "env", "list", "--json"], check=True, capture_output=True, text=True).stdout
    return [Path(p) for p in json.loads(out).get("envs", [])]


def env_exists(env_name: str, envs: Optional[List[Path]] = None) -> bool:
    envs = list_envs() if envs is None else envs
    return any(p.name == env_name for p in envs)


class CondaEnvCreate(ExternalStep):
    name = "conda-env-create"

    def __init__(self, env_name: str, url: Optional[str] = None, osx64_subdir: bool = False):
        super().__init__()
        self.env_name = env_name
        self.url = url or distro_url()
        self.osx64_subdir = osx64_subdir
        self.description = f"Creating conda environment '{env_name}'"

    def build_args(self) -> List[str]:
        return ["conda", "env", "create", "-n", self.env_name, "--file", self.url]

    def is_complete(self) -> bool:
        return env_exists(self.env_name)

    def run(self, runner: Runner = run_cmd) -> None:
        if self.osx64_subdir:
            # Apple Silicon: QIIME 2 only ships x86-64 builds, installed under Rosetta
            self.interpret_exit_code(runner(["env", "CONDA_SUBDIR=osx-64", *self.build_args()]))
            self.interpret_exit_code(runner(
                ["conda", "run", "-n", self.env_name, "conda", "config", "--env", "--set", "subdir", "osx-64"]
            ))
        else:
            self.interpret_exit_code(runner(self.build_args()))


def install_env(env_name: str, runner: Runner = run_cmd) -> bool:
    """Create the environment unless it exists. Returns True when it was created."""
    if env_exists(env_name):
        log.info(f"Conda environment '{env_name}' already exists; skipping creation")
        return False
    step = CondaEnvCreate(env_name, osx64_subdir=is_apple_silicon())
    log.info(f"Installing QIIME 2 amplicon {QIIME_RELEASE} into '{env_name}' from {step.url}")
    step.run(runner)
    log.info(f"Installation complete. Activate with: conda activate {env_name}")
    return True
