"""VBS flat-ntuple Coffea processor.

This module implements the Coffea ``ProcessorABC`` that reduces NanoAOD
events to the flat VBS semi-leptonic record.

High-level flow per chunk:
    1) Check the required collections and fields.
    2) Classify leptons into veto/tight tiers, build the trigger OR and the
       lepton preselection.
    3) Select and clean AK8 jets, pick the boosted boson candidate.
    4) Select and clean AK4 jets, pick the resolved boson pair and the VBF pair.
    5) Project surviving events into output records and fill the cutflow.

Output conventions:
    - ``process()`` returns ``{dataset: {"records": ak.Array, "cutflow": hist.Hist}}``.
    - Records carry ``OUTPUT_BRANCHES`` plus integer ``lep1_flavor``/``lep2_flavor``.

Every step is a pure function of the chunk and the ``SelectionConfig``; the
processor keeps no state between chunks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import awkward as ak
import numpy as np
from coffea import processor
from coffea.analysis_tools import PackedSelection

from vbscoffea.analysis_config import (
    DEFAULT_CONFIG, PRESELECTION,
    SEL_MIN_CLEAN_AK4, SEL_BOOSTED_OR_RESOLVED, SEL_VBF_J1, SEL_VBF_J2,
    SelectionConfig,
)
from vbscoffea.candidates import (
    CandidateSelection, completeness_mask, select_boosted_candidate, select_resolved_pairs,
)
from vbscoffea.cleaning import clean_fat_jets, clean_jets
from vbscoffea.events import event_from_mapping, validate_events
from vbscoffea.histograms import fill_cutflow
from vbscoffea.records import OutputRecord, build_records
from vbscoffea.selection import (
    LeptonSelection, leading_indices, preselection, select_fat_jets, select_jets,
    select_leptons, trigger_mask,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionResult:
    """Intermediate masks, indices and the final decision for one chunk."""

    leptons: LeptonSelection
    mu_idx: ak.Array
    el_idx: ak.Array
    fat_jet_mask: ak.Array
    jet_mask: ak.Array
    boosted_idx: ak.Array
    candidates: CandidateSelection
    selections: PackedSelection
    passed: np.ndarray


class VbsNtupler(processor.ProcessorABC):
    """Coffea processor producing flat VBS records.

    Parameters
    - ``config``: a ``SelectionConfig``; defaults to ``DEFAULT_CONFIG``.

    Expected ``events.metadata`` keys (optional):
      - ``dataset``: name used as the top-level output key.
    """

    def __init__(self, config: SelectionConfig | None = None):
        self._config = config if config is not None else DEFAULT_CONFIG

    @property
    def config(self) -> SelectionConfig:
        return self._config

    def select(self, events) -> SelectionResult:
        """Run the full object and event selection on a chunk."""
        validate_events(events)
        cfg = self._config

        leptons = select_leptons(events, cfg)
        selections = preselection(leptons, trigger_mask(events, cfg.trigger_paths))
        mu_idx = leading_indices(leptons.tight_muons, events.Muon.pt)
        el_idx = leading_indices(leptons.tight_electrons, events.Electron.pt)

        fat_jet_mask = clean_fat_jets(events, select_fat_jets(events, cfg), leptons, cfg)
        boosted_idx = select_boosted_candidate(events.FatJet, fat_jet_mask, cfg)

        jet_mask = clean_jets(events, select_jets(events, cfg), fat_jet_mask, leptons, cfg)
        n_clean = ak.sum(jet_mask, axis=1)
        selections.add(SEL_MIN_CLEAN_AK4, ak.to_numpy(n_clean >= cfg.min_clean_ak4_jets))

        candidates = select_resolved_pairs(events.Jet, jet_mask, boosted_idx, cfg)
        has_boson = (boosted_idx >= 0) | ((candidates.bos_j1 >= 0) & (candidates.bos_j2 >= 0))
        selections.add(SEL_BOOSTED_OR_RESOLVED, ak.to_numpy(has_boson))
        selections.add(SEL_VBF_J1, ak.to_numpy(candidates.vbf_j1 >= 0))
        selections.add(SEL_VBF_J2, ak.to_numpy(candidates.vbf_j2 >= 0))

        passed = selections.all(*PRESELECTION, SEL_MIN_CLEAN_AK4) & ak.to_numpy(
            completeness_mask(boosted_idx, candidates)
        )

        return SelectionResult(
            leptons=leptons,
            mu_idx=mu_idx,
            el_idx=el_idx,
            fat_jet_mask=fat_jet_mask,
            jet_mask=jet_mask,
            boosted_idx=boosted_idx,
            candidates=candidates,
            selections=selections,
            passed=np.asarray(passed, dtype=bool),
        )

    def records(self, events, result: SelectionResult):
        """Output records for the events that passed ``result``."""
        passed = result.passed
        return build_records(
            events[passed],
            result.mu_idx[passed],
            result.el_idx[passed],
            result.boosted_idx[passed],
            result.jet_mask[passed],
            self._config,
        )

    def process(self, events):
        """Run the ntupler for one NanoEvents chunk and return a dataset-nested output dict."""
        metadata = getattr(events, "metadata", None) or {}
        dataset = metadata.get("dataset", "unknown")

        result = self.select(events)
        records = self.records(events, result)
        cutflow = fill_cutflow(result.selections)

        logger.debug("%s: %d / %d events selected", dataset, len(records), len(events))
        return {dataset: {"records": records, "cutflow": cutflow}}

    def postprocess(self, accumulator):
        return accumulator


def process_event(event, config: SelectionConfig | None = None) -> OutputRecord | None:
    """Select a single event given as a plain mapping.

    Returns the ``OutputRecord`` or ``None`` when any filter rejects the event.
    Raises ``MalformedEventError`` for inconsistent input.
    """
    ntupler = VbsNtupler(config)
    events = event_from_mapping(event, ntupler.config.trigger_paths)
    result = ntupler.select(events)
    if not result.passed[0]:
        return None
    return OutputRecord.from_row(ntupler.records(events, result)[0])
