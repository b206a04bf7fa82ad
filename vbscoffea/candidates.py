"""Boosted and resolved boson candidates plus the VBF tag-jet pair.

All selections here follow the same pattern: rank candidates by a key, keep
the ones passing a predicate, and take the first survivor per event.  Absent
candidates are reported as index -1.
"""

from __future__ import annotations

from dataclasses import dataclass

import awkward as ak
import numpy as np

from vbscoffea.physics import lorentz_vectors, pair_mass


@dataclass(frozen=True)
class CandidateSelection:
    """Per-event jet indices of the resolved boson pair and the VBF pair (-1 if absent)."""

    bos_j1: ak.Array
    bos_j2: ak.Array
    vbf_j1: ak.Array
    vbf_j2: ak.Array


def select_boosted_candidate(fat_jets, clean_mask, config):
    """Index of the cleaned fat jet with soft-drop mass closest to the boson mass.

    Ties keep collection order.  Returns -1 for events without a cleaned fat jet.
    """
    distance = np.abs(fat_jets.msoftdrop - config.boson_mass)
    order = ak.argsort(distance, axis=1, ascending=True, stable=True)
    ranked = order[clean_mask[order]]
    return ak.fill_none(ak.firsts(ranked), -1)


def jet_pairs(jets, clean_mask):
    """All unordered pairs (j1 < j2) of cleaned jets with their invariant mass."""
    kept = ak.local_index(jets.pt, axis=1)[clean_mask]
    pairs = ak.combinations(kept, 2, axis=1, fields=["j1", "j2"])
    j1, j2 = pairs.j1, pairs.j2
    p4 = lorentz_vectors(jets)
    mass = pair_mass(p4[j1], p4[j2])
    return ak.zip({"j1": j1, "j2": j2, "mass": mass})


def first_ranked_pair(pairs, key, passes, *, ascending=True, exclude=()):
    """Take the best-ranked qualifying pair per event.

    Pairs are ordered by ``key`` (stable), pairs failing ``passes`` or sharing
    a jet with any per-event index in ``exclude`` are dropped, and the first
    remaining pair is returned as ``(j1, j2)`` index arrays (-1 when none).
    """
    usable = passes
    for index in exclude:
        usable = usable & (pairs.j1 != index) & (pairs.j2 != index)

    order = ak.argsort(key, axis=1, ascending=ascending, stable=True)
    best = ak.firsts(pairs[order][usable[order]])
    return ak.fill_none(best.j1, -1), ak.fill_none(best.j2, -1)


def select_resolved_pairs(jets, clean_mask, boosted_idx, config) -> CandidateSelection:
    """Pick the resolved boson pair (only without a boosted candidate) and the VBF pair.

    The boson pair is the pair closest to the boson mass with both jets
    central and the pair mass inside the window.  The VBF pair is the
    highest-mass pair above the VBF threshold with the jets in opposite
    hemispheres and no jet shared with the boson pair.
    """
    pairs = jet_pairs(jets, clean_mask)
    eta1 = jets.eta[pairs.j1]
    eta2 = jets.eta[pairs.j2]

    boson_ok = (
        (boosted_idx < 0)
        & (np.abs(eta1) < config.ak4_eta_max)
        & (np.abs(eta2) < config.ak4_eta_max)
        & (pairs.mass >= config.mjj_boson_min)
        & (pairs.mass <= config.mjj_boson_max)
    )
    bos_j1, bos_j2 = first_ranked_pair(
        pairs, np.abs(pairs.mass - config.boson_mass), boson_ok, ascending=True,
    )

    vbf_ok = (pairs.mass >= config.mjj_vbf_min) & (eta1 * eta2 < 0)
    vbf_j1, vbf_j2 = first_ranked_pair(
        pairs, pairs.mass, vbf_ok, ascending=False, exclude=(bos_j1, bos_j2),
    )

    return CandidateSelection(bos_j1=bos_j1, bos_j2=bos_j2, vbf_j1=vbf_j1, vbf_j2=vbf_j2)


def completeness_mask(boosted_idx, candidates: CandidateSelection):
    """Boosted or fully resolved boson, always together with a VBF pair."""
    has_boson = (boosted_idx >= 0) | ((candidates.bos_j1 >= 0) & (candidates.bos_j2 >= 0))
    has_vbf = (candidates.vbf_j1 >= 0) & (candidates.vbf_j2 >= 0)
    return has_boson & has_vbf
