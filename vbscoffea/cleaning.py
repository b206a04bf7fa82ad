"""Geometric overlap cleaning of jets against leptons and other jets.

Each cleaning step keeps an object only if it already passes its quality mask
and no selected reference object lies within the cleaning radius.
"""

import awkward as ak

from vbscoffea.physics import lorentz_vectors


def overlap_mask(objects, references, reference_mask, radius, *, exclude_self=False):
    """Flag objects lying within ``radius`` of any selected reference.

    ``objects`` and ``references`` are jagged collections with ``pt``/``eta``/``phi``
    fields.  With ``exclude_self`` both must be the same collection and the
    pairing of an object with itself is ignored.  Events without selected
    references flag nothing.
    """
    pairs = ak.cartesian(
        {"obj": lorentz_vectors(objects), "ref": lorentz_vectors(references)},
        axis=1,
        nested=True,
    )
    selected = ak.cartesian({"obj": objects.pt, "ref": reference_mask}, axis=1, nested=True).ref
    close = (pairs["obj"].deltaR(pairs["ref"]) < radius) & selected

    if exclude_self:
        idx = ak.argcartesian({"obj": objects.pt, "ref": references.pt}, axis=1, nested=True)
        close = close & (idx.obj != idx.ref)

    return ak.any(close, axis=2)


def clean_fat_jets(events, fat_jet_mask, leptons, config):
    """Keep quality fat jets separated from every tight muon and tight electron."""
    fj = events.FatJet
    near_muon = overlap_mask(fj, events.Muon, leptons.tight_muons, config.dr_ak8_lepton)
    near_electron = overlap_mask(fj, events.Electron, leptons.tight_electrons, config.dr_ak8_lepton)
    return fat_jet_mask & ~(near_muon | near_electron)


def clean_jets(events, jet_mask, clean_fat_jet_mask, leptons, config):
    """Keep quality jets isolated from other jets, cleaned fat jets and tight leptons.

    Two quality jets closer than ``dr_ak4_ak4`` veto each other.
    """
    jets = events.Jet
    near_jet = overlap_mask(jets, jets, jet_mask, config.dr_ak4_ak4, exclude_self=True)
    near_fat_jet = overlap_mask(jets, events.FatJet, clean_fat_jet_mask, config.dr_ak4_ak8)
    near_muon = overlap_mask(jets, events.Muon, leptons.tight_muons, config.dr_ak4_lepton)
    near_electron = overlap_mask(jets, events.Electron, leptons.tight_electrons, config.dr_ak4_lepton)
    return jet_mask & ~(near_jet | near_fat_jet | near_muon | near_electron)
