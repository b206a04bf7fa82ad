"""Object selection and event preselection.

Lepton tiers:
    - veto  = pT above the common veto threshold AND loose ID
    - tight = |eta| AND pT above the flavor thresholds AND tight ID

Jet quality uses the nominal value OR any configured JES-shifted value, so an
object passes if it would pass under any variation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import awkward as ak
import numpy as np
from coffea.analysis_tools import PackedSelection

from vbscoffea.analysis_config import (
    SEL_TRIGGER, SEL_TIGHT_LEPTON, SEL_MAX_TWO_VETO,
    SEL_NO_MIXED_FLAVOR_MU, SEL_NO_MIXED_FLAVOR_E,
    SEL_NO_EXTRA_VETO_MU, SEL_NO_EXTRA_VETO_E,
)

logger = logging.getLogger(__name__)

# Warn-once cache (per worker process) to avoid log spam.
_WARN_ONCE: set[str] = set()


def _warn_once(key, msg, *args):
    if key not in _WARN_ONCE:
        _WARN_ONCE.add(key)
        logger.warning(msg, *args)


@dataclass(frozen=True)
class LeptonSelection:
    """Per-object veto/tight masks and per-event counts for both flavors."""

    veto_muons: ak.Array
    tight_muons: ak.Array
    veto_electrons: ak.Array
    tight_electrons: ak.Array
    n_veto_muons: ak.Array
    n_tight_muons: ak.Array
    n_veto_electrons: ak.Array
    n_tight_electrons: ak.Array


def select_leptons(events, config) -> LeptonSelection:
    """Classify muons and electrons into veto and tight tiers."""
    mu = events.Muon
    el = events.Electron

    veto_mu = (mu.pt > config.lepton_veto_pt) & mu[config.muon_veto_id]
    tight_mu = (
        (np.abs(mu.eta) < config.muon_eta_max)
        & (mu.pt > config.muon_pt_min)
        & mu[config.muon_tight_id]
    )

    veto_el = (el.pt > config.lepton_veto_pt) & (el.cutBased == config.electron_veto_id)
    tight_el = (
        (np.abs(el.eta) < config.electron_eta_max)
        & (el.pt > config.electron_pt_min)
        & (el.cutBased == config.electron_tight_id)
    )

    return LeptonSelection(
        veto_muons=veto_mu,
        tight_muons=tight_mu,
        veto_electrons=veto_el,
        tight_electrons=tight_el,
        n_veto_muons=ak.sum(veto_mu, axis=1),
        n_tight_muons=ak.sum(tight_mu, axis=1),
        n_veto_electrons=ak.sum(veto_el, axis=1),
        n_tight_electrons=ak.sum(tight_el, axis=1),
    )


def leading_indices(mask, pt, n=2):
    """Indices of the ``n`` highest-pT selected objects, padded with -1.

    Returns a regular (events, n) integer array; column 0 is the leading
    object.  Equal-pT objects keep their collection order.
    """
    order = ak.argsort(pt, axis=1, ascending=False, stable=True)
    selected = order[mask[order]]
    padded = ak.pad_none(selected, n, axis=1, clip=True)
    return ak.fill_none(padded, -1)


def trigger_mask(events, paths):
    """Per-event OR of the given HLT paths.

    Paths missing from the input are treated as False (logged once).
    """
    n = len(events)
    try:
        HLT = events.HLT
    except AttributeError:
        HLT = None

    def hlt(name):
        if HLT is not None:
            try:
                return ak.values_astype(HLT[name], np.bool_)
            except (AttributeError, KeyError, IndexError, ValueError):
                pass
        _warn_once(f"missing_hlt::{name}", "HLT path '%s' not found in input; treating it as False.", name)
        return ak.Array(np.zeros(n, dtype=bool))

    mask = ak.Array(np.zeros(n, dtype=bool))
    for path in paths:
        mask = mask | hlt(path)
    return mask


def preselection(leptons: LeptonSelection, trigger) -> PackedSelection:
    """Build the event-level lepton preselection.

    Enforces a single lepton-flavor channel per event, at most two veto
    leptons in total, and no same-flavor veto lepton beyond a single tight one.
    """
    n_vm = leptons.n_veto_muons
    n_tm = leptons.n_tight_muons
    n_ve = leptons.n_veto_electrons
    n_te = leptons.n_tight_electrons

    selections = PackedSelection()
    selections.add(SEL_TRIGGER, trigger)
    selections.add(SEL_TIGHT_LEPTON, (n_tm + n_te) > 0)
    selections.add(SEL_MAX_TWO_VETO, (n_vm + n_ve) <= 2)
    selections.add(SEL_NO_MIXED_FLAVOR_MU, ~((n_tm > 0) & (n_ve > 0)))
    selections.add(SEL_NO_MIXED_FLAVOR_E, ~((n_te > 0) & (n_vm > 0)))
    selections.add(SEL_NO_EXTRA_VETO_MU, ~((n_tm == 1) & (n_vm > 1)))
    selections.add(SEL_NO_EXTRA_VETO_E, ~((n_te == 1) & (n_ve > 1)))
    return selections


def _variants(collection, field, variations):
    """Nominal field plus every available shifted ``<field>_<variation>``."""
    values = [collection[field]]
    for variation in variations:
        name = f"{field}_{variation}"
        try:
            values.append(collection[name])
        except (AttributeError, KeyError, IndexError, ValueError):
            _warn_once(f"missing_variant::{name}", "Branch '%s' not found; using nominal '%s' only.", name, field)
    return values


def _any_passes(values, cut):
    passes = cut(values[0])
    for value in values[1:]:
        passes = passes | cut(value)
    return passes


def select_fat_jets(events, config):
    """Quality mask for AK8 jets (pT, |eta| and soft-drop mass window)."""
    fj = events.FatJet
    pts = _variants(fj, "pt", config.jet_variations)
    sdms = _variants(fj, "msoftdrop", config.jet_variations)

    return (
        _any_passes(pts, lambda v: v > config.ak8_pt_min)
        & (np.abs(fj.eta) < config.ak8_eta_max)
        & _any_passes(sdms, lambda v: v > config.ak8_msoftdrop_min)
        & _any_passes(sdms, lambda v: v < config.ak8_msoftdrop_max)
    )


def select_jets(events, config):
    """Quality mask for AK4 jets (pT only; eta is cut where it is used)."""
    pts = _variants(events.Jet, "pt", config.jet_variations)
    return _any_passes(pts, lambda v: v > config.ak4_pt_min)
