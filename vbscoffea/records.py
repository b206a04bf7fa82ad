"""Projection of selected objects into the flat output record.

Lepton slots are flavor-agnostic: slot k takes the rank-k tight muon if there
is one, else the rank-k tight electron, else sentinel values.  The preselection
guarantees at most one flavor per event, so the muon-first rule only matters
for events that reach the builder through custom selections.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import awkward as ak
import numpy as np

from vbscoffea.analysis_config import ELE_MASS, MUON_MASS, OUTPUT_BRANCHES, SENTINEL


class LeptonFlavor(enum.IntEnum):
    """Flavor tag of an output lepton slot (values are |pdgId|)."""

    NONE = 0
    ELECTRON = 11
    MUON = 13


@dataclass(frozen=True)
class LeptonSlot:
    """Kinematics of one output lepton; all fields are the sentinel when ``flavor`` is NONE."""

    flavor: LeptonFlavor
    pt: float
    eta: float
    phi: float
    mass: float
    charge: float
    iso: float


@dataclass(frozen=True)
class OutputRecord:
    """One flat output row for an event that passed the full selection."""

    run: int
    event: int
    lep1: LeptonSlot
    lep2: LeptonSlot
    bos_msoftdrop: float
    bos_pt: float
    n_btag_loose: int
    n_btag_medium: int
    n_btag_tight: int

    @classmethod
    def from_row(cls, row) -> "OutputRecord":
        """Build from one entry of the record array made by ``build_records``."""
        def slot(k):
            return LeptonSlot(
                flavor=LeptonFlavor(int(row[f"lep{k}_flavor"])),
                pt=float(row[f"lep{k}_pt"]),
                eta=float(row[f"lep{k}_eta"]),
                phi=float(row[f"lep{k}_phi"]),
                mass=float(row[f"lep{k}_m"]),
                charge=float(row[f"lep{k}_q"]),
                iso=float(row[f"lep{k}_iso"]),
            )

        return cls(
            run=int(row["run"]),
            event=int(row["evt"]),
            lep1=slot(1),
            lep2=slot(2),
            bos_msoftdrop=float(row["bos_PuppiAK8_m_sd0_corr"]),
            bos_pt=float(row["bos_PuppiAK8_pt"]),
            n_btag_loose=int(row["nBtag_loose"]),
            n_btag_medium=int(row["nBtag_medium"]),
            n_btag_tight=int(row["nBtag_tight"]),
        )

    def as_branches(self) -> dict:
        """Flat ``{branch: value}`` view using the output TTree branch names."""
        out = {
            "run": self.run,
            "evt": self.event,
            "bos_PuppiAK8_m_sd0_corr": self.bos_msoftdrop,
            "bos_PuppiAK8_pt": self.bos_pt,
            "nBtag_loose": self.n_btag_loose,
            "nBtag_medium": self.n_btag_medium,
            "nBtag_tight": self.n_btag_tight,
        }
        for k, lep in ((1, self.lep1), (2, self.lep2)):
            out[f"lep{k}_pt"] = lep.pt
            out[f"lep{k}_eta"] = lep.eta
            out[f"lep{k}_phi"] = lep.phi
            out[f"lep{k}_m"] = lep.mass
            out[f"lep{k}_q"] = lep.charge
            out[f"lep{k}_iso"] = lep.iso
        return {name: out[name] for name in OUTPUT_BRANCHES}


def take_at(values, index):
    """Per-event ``values[index]``; None where ``index`` is -1."""
    safe = ak.singletons(ak.mask(index, index >= 0))
    return ak.firsts(values[safe])


def _pick(mu_idx, el_idx, mu_value, el_value):
    """Muon value if the muon index is valid, else electron value, else the sentinel."""
    sentinel = np.full(len(mu_idx), SENTINEL, dtype=np.float32)
    mu_value = ak.fill_none(mu_value, SENTINEL)
    el_value = ak.fill_none(el_value, SENTINEL)
    picked = ak.where(mu_idx >= 0, mu_value, ak.where(el_idx >= 0, el_value, sentinel))
    return ak.values_astype(picked, np.float32)


def lepton_columns(events, mu_idx, el_idx, k):
    """Output columns of lepton slot ``k`` from rank-k muon/electron indices."""
    mu = events.Muon
    el = events.Electron
    columns = {}
    for suffix, mu_field, el_field in (
        ("pt", "pt", "pt"),
        ("eta", "eta", "eta"),
        ("phi", "phi", "phi"),
        ("q", "charge", "charge"),
        ("iso", "pfRelIso04_all", "pfRelIso03_all"),
    ):
        columns[f"lep{k}_{suffix}"] = _pick(
            mu_idx, el_idx, take_at(mu[mu_field], mu_idx), take_at(el[el_field], el_idx),
        )

    n = len(mu_idx)
    columns[f"lep{k}_m"] = _pick(
        mu_idx, el_idx, np.full(n, MUON_MASS), np.full(n, ELE_MASS),
    )
    flavor = ak.where(
        mu_idx >= 0,
        np.full(n, LeptonFlavor.MUON, dtype=np.int32),
        ak.where(
            el_idx >= 0,
            np.full(n, LeptonFlavor.ELECTRON, dtype=np.int32),
            np.full(n, LeptonFlavor.NONE, dtype=np.int32),
        ),
    )
    columns[f"lep{k}_flavor"] = ak.values_astype(flavor, np.int32)
    return columns


def btag_counts(jets, clean_mask, config):
    """Loose/medium/tight b-jet multiplicities; each tier is a subset of the looser one."""
    base = clean_mask & (np.abs(jets.eta) < config.btag_eta_max) & (jets.pt > config.btag_pt_min)
    loose = base & (jets.btagDeepB > config.btag_loose)
    medium = loose & (jets.btagDeepB > config.btag_medium)
    tight = medium & (jets.btagDeepB > config.btag_tight)
    return {
        "nBtag_loose": ak.values_astype(ak.sum(loose, axis=1), np.int32),
        "nBtag_medium": ak.values_astype(ak.sum(medium, axis=1), np.int32),
        "nBtag_tight": ak.values_astype(ak.sum(tight, axis=1), np.int32),
    }


def build_records(events, mu_idx, el_idx, boosted_idx, jet_mask, config):
    """Build the flat output record array for ``events``.

    ``mu_idx``/``el_idx`` are (events, 2) rank-ordered tight-lepton indices,
    ``boosted_idx`` the selected fat-jet index and ``jet_mask`` the cleaned
    AK4 mask.  Besides ``OUTPUT_BRANCHES`` the result carries the integer
    ``lep1_flavor``/``lep2_flavor`` tags.
    """
    columns = {
        "run": events.run,
        "evt": events.event,
    }
    for k in (1, 2):
        columns.update(lepton_columns(events, mu_idx[:, k - 1], el_idx[:, k - 1], k))

    fj = events.FatJet
    columns["bos_PuppiAK8_m_sd0_corr"] = ak.values_astype(
        ak.fill_none(take_at(fj.msoftdrop, boosted_idx), SENTINEL), np.float32,
    )
    columns["bos_PuppiAK8_pt"] = ak.values_astype(
        ak.fill_none(take_at(fj.pt, boosted_idx), SENTINEL), np.float32,
    )
    columns.update(btag_counts(events.Jet, jet_mask, config))

    ordered = {name: columns[name] for name in OUTPUT_BRANCHES}
    ordered["lep1_flavor"] = columns["lep1_flavor"]
    ordered["lep2_flavor"] = columns["lep2_flavor"]
    return ak.zip(ordered, depth_limit=1)
