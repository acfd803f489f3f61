from pathlib import Path
import logging

from windchime.steps.merge import merge_asv_taxonomy


def test_merge_asv_and_taxonomy(tmp_path: Path, caplog):
    asv = tmp_path / "asv-table.tsv"
    asv.write_text(
        "# Constructed from biom file\n"
        "#OTU ID\tS1\tS2\n"
        "f2\t1.0\t0.0\n"
        "f1\t5.0\t7.0\n"
        "f3\t0.0\t2.0\n"
    )
    tax = tmp_path / "pr2_taxonomy.tsv"
    tax.write_text(
        "Feature ID\tTaxon\tConfidence\n"
        "f1\tEukaryota;Obazoa\t0.98\n"
        "f2\tEukaryota;TSAR\t0.71\n"
    )
    out = tmp_path / "merged" / "asv_count_tax.tsv"
    caplog.set_level(logging.WARNING)

    assert merge_asv_taxonomy(asv, tax, out) == 3
    rows = [ln.split("\t") for ln in out.read_text().splitlines()]
    assert rows[0] == ["Feature.ID", "S1", "S2", "pr2_Taxon", "pr2_Confidence"]
    assert rows[1] == ["f2", "1.0", "0.0", "Eukaryota;TSAR", "0.71"]
    assert rows[2][0] == "f1" and rows[2][3] == "Eukaryota;Obazoa"
    assert rows[3] == ["f3", "0.0", "2.0", "", ""]
    assert "1 features" in caplog.text
