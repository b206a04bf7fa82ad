"""Tests for vbscoffea.candidates: boosted choice, pair ranking and exclusivity."""

import awkward as ak
import numpy as np
import pytest

from vbscoffea.analysis_config import DEFAULT_CONFIG
from vbscoffea.candidates import (
    CandidateSelection, completeness_mask, first_ranked_pair, jet_pairs,
    select_boosted_candidate, select_resolved_pairs,
)


def _jets(pts, etas, phis, masses=None):
    n = len(pts)
    return ak.zip({
        "pt": [pts],
        "eta": [etas],
        "phi": [phis],
        "mass": [masses if masses is not None else [0.0] * n],
    })


def _all_clean(jets):
    return jets.pt > -1.0


# Jets A, B form a 90 GeV boson pair; C is a far-backward jet whose best
# VBF partner is A; D is a central jet that pairs with C above 500 GeV.
_A = (45.0, 0.5, 0.0)
_B = (45.0, 0.5, np.pi)
_C = (150.0, -4.0, np.pi)
_D = (31.0, 0.2, np.pi / 2)


def _from_tuples(*objs):
    pts, etas, phis = zip(*objs)
    return _jets(list(pts), list(etas), list(phis))


class TestBoostedCandidate:
    def test_closest_to_boson_mass(self):
        fat_jets = ak.zip({"msoftdrop": [[90.0, 75.0]]})
        idx = select_boosted_candidate(fat_jets, ak.Array([[True, True]]), DEFAULT_CONFIG)
        assert idx.tolist() == [1]

    def test_uncleaned_fat_jet_skipped(self):
        fat_jets = ak.zip({"msoftdrop": [[90.0, 75.0]]})
        idx = select_boosted_candidate(fat_jets, ak.Array([[True, False]]), DEFAULT_CONFIG)
        assert idx.tolist() == [0]

    def test_none_when_nothing_cleaned(self):
        fat_jets = ak.zip({"msoftdrop": [[90.0], [80.0]]})
        idx = select_boosted_candidate(fat_jets, ak.Array([[False], [True]]), DEFAULT_CONFIG)
        assert idx.tolist() == [-1, 0]

    def test_tie_keeps_collection_order(self):
        fat_jets = ak.zip({"msoftdrop": [[70.0, 90.0]]})
        cfg = DEFAULT_CONFIG.with_overrides(boson_mass=80.0)
        idx = select_boosted_candidate(fat_jets, ak.Array([[True, True]]), cfg)
        assert idx.tolist() == [0]

    def test_index_refers_to_full_collection(self):
        fat_jets = ak.zip({"msoftdrop": [[200.0, 60.0, 81.0]]})
        idx = select_boosted_candidate(fat_jets, ak.Array([[False, True, True]]), DEFAULT_CONFIG)
        assert idx.tolist() == [2]


class TestJetPairs:
    def test_unordered_pairs_of_clean_jets(self):
        jets = _jets([50.0, 40.0, 30.0], [0.0, 0.0, 0.0], [0.0, 1.0, 2.0])
        pairs = jet_pairs(jets, ak.Array([[True, False, True]]))
        assert pairs.j1.tolist() == [[0]]
        assert pairs.j2.tolist() == [[2]]

    def test_pair_mass(self):
        jets = _jets([45.0, 45.0], [0.0, 0.0], [0.0, np.pi])
        pairs = jet_pairs(jets, _all_clean(jets))
        assert pairs.mass[0, 0] == pytest.approx(90.0)


class TestFirstRankedPair:
    def _pairs(self):
        return ak.zip({"j1": [[0, 0, 1]], "j2": [[1, 2, 2]], "mass": [[100.0, 700.0, 700.0]]})

    def test_descending_ties_keep_first(self):
        pairs = self._pairs()
        j1, j2 = first_ranked_pair(pairs, pairs.mass, pairs.mass > 0, ascending=False)
        assert (j1.tolist(), j2.tolist()) == ([0], [2])

    def test_exclusion(self):
        pairs = self._pairs()
        j1, j2 = first_ranked_pair(
            pairs, pairs.mass, pairs.mass > 0, ascending=False, exclude=(ak.Array([0]),),
        )
        assert (j1.tolist(), j2.tolist()) == ([1], [2])

    def test_nothing_passes(self):
        pairs = self._pairs()
        j1, j2 = first_ranked_pair(pairs, pairs.mass, pairs.mass > 1000)
        assert (j1.tolist(), j2.tolist()) == ([-1], [-1])


class TestResolvedPairs:
    def test_boson_and_vbf(self):
        jets = _jets([45.0, 45.0, 50.0, 50.0], [0.0, 0.0, 2.5, -2.5], [0.0, np.pi, 0.0, np.pi])
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([-1]), DEFAULT_CONFIG)
        assert (cand.bos_j1.tolist(), cand.bos_j2.tolist()) == ([0], [1])
        assert (cand.vbf_j1.tolist(), cand.vbf_j2.tolist()) == ([2], [3])

    def test_no_resolved_boson_with_boosted(self):
        jets = _jets([45.0, 45.0, 50.0, 50.0], [0.0, 0.0, 2.5, -2.5], [0.0, np.pi, 0.0, np.pi])
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([0]), DEFAULT_CONFIG)
        assert (cand.bos_j1.tolist(), cand.bos_j2.tolist()) == ([-1], [-1])
        assert (cand.vbf_j1.tolist(), cand.vbf_j2.tolist()) == ([2], [3])

    def test_boson_needs_central_jets(self):
        jets = _jets([30.0, 30.0], [0.0, 2.45], [0.0, np.pi])
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([-1]), DEFAULT_CONFIG)
        assert cand.bos_j1.tolist() == [-1]

    def test_boson_mass_window(self):
        # 2 * 100 * 100 * 2 -> 200 GeV, outside the window
        jets = _jets([100.0, 100.0], [0.0, 0.0], [0.0, np.pi])
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([-1]), DEFAULT_CONFIG)
        assert cand.bos_j1.tolist() == [-1]

    def test_vbf_needs_opposite_hemispheres(self):
        jets = _jets([100.0, 100.0], [4.5, 0.5], [0.0, np.pi])
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([-1]), DEFAULT_CONFIG)
        assert cand.vbf_j1.tolist() == [-1]

    def test_vbf_disjoint_from_boson(self):
        jets = _from_tuples(_A, _B, _C)
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([-1]), DEFAULT_CONFIG)
        assert (cand.bos_j1.tolist(), cand.bos_j2.tolist()) == ([0], [1])
        assert (cand.vbf_j1.tolist(), cand.vbf_j2.tolist()) == ([-1], [-1])

    def test_vbf_falls_through_to_disjoint_pair(self):
        jets = _from_tuples(_A, _B, _C, _D)
        cand = select_resolved_pairs(jets, _all_clean(jets), ak.Array([-1]), DEFAULT_CONFIG)
        assert (cand.bos_j1.tolist(), cand.bos_j2.tolist()) == ([0], [1])
        assert (cand.vbf_j1.tolist(), cand.vbf_j2.tolist()) == ([2], [3])

    def test_unclean_jets_not_paired(self):
        jets = _jets([45.0, 45.0, 50.0, 50.0], [0.0, 0.0, 2.5, -2.5], [0.0, np.pi, 0.0, np.pi])
        clean = ak.Array([[True, True, True, False]])
        cand = select_resolved_pairs(jets, clean, ak.Array([-1]), DEFAULT_CONFIG)
        assert cand.vbf_j1.tolist() == [-1]


class TestCompleteness:
    def _cand(self, bos, vbf):
        return CandidateSelection(
            bos_j1=ak.Array([bos[0]]), bos_j2=ak.Array([bos[1]]),
            vbf_j1=ak.Array([vbf[0]]), vbf_j2=ak.Array([vbf[1]]),
        )

    def test_boosted_with_vbf(self):
        assert completeness_mask(ak.Array([0]), self._cand((-1, -1), (2, 3))).tolist() == [True]

    def test_resolved_with_vbf(self):
        assert completeness_mask(ak.Array([-1]), self._cand((0, 1), (2, 3))).tolist() == [True]

    def test_missing_vbf(self):
        assert completeness_mask(ak.Array([0]), self._cand((-1, -1), (-1, -1))).tolist() == [False]

    def test_missing_boson(self):
        assert completeness_mask(ak.Array([-1]), self._cand((-1, -1), (2, 3))).tolist() == [False]
