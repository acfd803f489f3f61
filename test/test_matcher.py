import random
import pytest

from windchime.demux.barcodes import BarcodeEntry, BarcodeTable
from windchime.demux.fastq import ReadPair
from windchime.demux.matcher import (
    Assigned, BarcodeMatcher, MatchPolicy, Unassigned, classify, hamming, window_distance,
)


def pair(fwd: str, rev: str = "TTTTTTTT") -> ReadPair:
    return ReadPair("r", "@r", fwd, "I" * len(fwd), "@r", rev, "I" * len(rev))


def test_hamming_counts_N():
    assert hamming("AAAAA", "AAAAA") == 0
    assert hamming("AANAA", "AAAAT") == 2
    assert hamming("AAAAA", "AANAA") == 1


def test_window_distance_offset_and_short_read():
    assert window_distance("NNACGT", "ACGT", 2) == 0
    assert window_distance("ACG", "ACGT", 0) is None


def test_unique_assignment():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT"), BarcodeEntry("S2", "TTTT")])
    assert classify(pair("ACGTGGG"), t, MatchPolicy(max_mismatches=0)) == Assigned("S1", 0)
    assert classify(pair("ACGAGGG"), t, MatchPolicy(max_mismatches=1)) == Assigned("S1", 1)


def test_over_threshold_is_no_match():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT")])
    assert classify(pair("AGGAGGG"), t, MatchPolicy(max_mismatches=1)) == Unassigned("no_match")


def test_offset_window():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT")])
    assert classify(pair("GGACGTAA"), t, MatchPolicy(offset=2, max_mismatches=0)) == Assigned("S1", 0)
    assert classify(pair("ACGTAAAA"), t, MatchPolicy(offset=2, max_mismatches=0)) == Unassigned("no_match")


def test_closest_wins_over_farther():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT"), BarcodeEntry("S2", "ACCC")])
    assert classify(pair("ACGA"), t, MatchPolicy(max_mismatches=2)) == Assigned("S1", 1)


def test_tie_is_ambiguous_regardless_of_order():
    entries = [BarcodeEntry("S1", "AAAA"), BarcodeEntry("S2", "AAAT"), BarcodeEntry("S3", "GGGG")]
    policy = MatchPolicy(max_mismatches=1)
    rng = random.Random(7)
    for _ in range(10):
        rng.shuffle(entries)
        t = BarcodeTable(list(entries))
        assert classify(pair("AAAC"), t, policy) == Unassigned("ambiguous")
        assert classify(pair("AAAA"), t, policy) == Assigned("S1", 0)


def test_dual_requires_both_reads():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT", "GGGG"), BarcodeEntry("S2", "ACGT", "CCCC")])
    policy = MatchPolicy(max_mismatches=0)
    assert classify(pair("ACGTAA", "CCCCAA"), t, policy) == Assigned("S2", 0)
    assert classify(pair("ACGTAA", "AAAAAA"), t, policy) == Unassigned("no_match")


def test_dual_ranks_by_summed_distance():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT", "GGGG"), BarcodeEntry("S2", "ACGA", "GGGC")])
    assert classify(pair("ACGT", "GGGC"), t, MatchPolicy(max_mismatches=1)) == Unassigned("ambiguous")
    assert classify(pair("ACGT", "GGGG"), t, MatchPolicy(max_mismatches=1)) == Assigned("S1", 0)


def test_policy_rejects_negative():
    with pytest.raises(ValueError):
        MatchPolicy(offset=-1)
    with pytest.raises(ValueError):
        MatchPolicy(max_mismatches=-1)


def test_prepare_trims_only_when_enabled():
    t = BarcodeTable([BarcodeEntry("S1", "ACGT", "GG")])
    p = pair("NACGTCCCC", "AGGTTT")
    keep = BarcodeMatcher(t, MatchPolicy(offset=1))
    assert keep.prepare(p, "S1") is p
    trimmed = BarcodeMatcher(t, MatchPolicy(offset=1), trim=True).prepare(p, "S1")
    assert trimmed.forward_sequence == "CCCC" and trimmed.forward_quality == "IIII"
    assert trimmed.reverse_sequence == "TTT"
