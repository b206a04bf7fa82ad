"""File-level I/O for the VBS ntupler.

Reads NanoAOD files with coffea NanoEvents, runs ``VbsNtupler`` on each file,
merges the per-file outputs and writes the flat ``Events`` TTree with uproot.
All functions return structured data for the caller to log or inspect; the
CLI in ``bin/run_ntupler.py`` owns logging setup and the run-level abort.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

import awkward as ak
import numpy as np
import uproot
from coffea.nanoevents import NanoAODSchema, NanoEventsFactory

from vbscoffea.analysis_config import DEFAULT_CONFIG, DEFAULT_REDIRECTOR, OUTPUT_BRANCHES
from vbscoffea.analyzer import VbsNtupler
from vbscoffea.histograms import cutflow_counts

logger = logging.getLogger(__name__)

NanoAODSchema.warn_missing_crossrefs = False
NanoAODSchema.error_missing_event_ids = False

TREE_NAME = "Events"

# Output TTree branch types.  Everything not listed is float32.
_BRANCH_DTYPES = {
    "run": np.uint32,
    "evt": np.uint64,
    "nBtag_loose": np.int32,
    "nBtag_medium": np.int32,
    "nBtag_tight": np.int32,
}


def branch_types():
    """mktree-compatible ``{branch: dtype}`` for ``OUTPUT_BRANCHES``."""
    return {name: np.dtype(_BRANCH_DTYPES.get(name, np.float32)) for name in OUTPUT_BRANCHES}


@dataclass
class NtupleResult:
    """Structured result from ntupling a single file."""
    path: str
    n_events: int
    n_selected: int
    elapsed_s: float
    output: dict


def read_sample_list(path, redirector=DEFAULT_REDIRECTOR):
    """Read one LFN per line and prefix each with the XRootD redirector.

    Blank lines and lines starting with ``#`` are skipped.  Entries that are
    already full URLs (``root://...``) or local paths that exist are kept as is.
    """
    try:
        with open(path, "r", encoding="utf-8") as file:
            lines = file.read().splitlines()
    except OSError as e:
        raise RuntimeError(f"Failed to read sample list {path}: {e}") from e

    files = []
    for line in lines:
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        if entry.startswith("root://") or os.path.exists(entry) or not redirector:
            files.append(entry)
        else:
            files.append(redirector + entry)
    return files


def sample_basename(path):
    """Sample-list name without directory and extension (``lists/WZ.txt`` -> ``WZ``)."""
    return Path(path).stem


def load_events(path, dataset):
    """Read the ``Events`` tree of one NanoAOD file eagerly as NanoEvents."""
    return NanoEventsFactory.from_root(
        {path: TREE_NAME},
        schemaclass=NanoAODSchema,
        metadata={"dataset": dataset},
        mode="eager",
    ).events()


def ntuple_file(path, config=DEFAULT_CONFIG, dataset="unknown") -> NtupleResult:
    """Run the ntupler on one input file."""
    t0 = time.monotonic()
    events = load_events(path, dataset)
    output = VbsNtupler(config).process(events)
    n_selected = len(output[dataset]["records"])
    return NtupleResult(
        path=path,
        n_events=len(events),
        n_selected=n_selected,
        elapsed_s=time.monotonic() - t0,
        output=output,
    )


def merge_outputs(outputs):
    """Merge per-file ``process()`` outputs dataset by dataset.

    Records are concatenated in input order and cutflow histograms are added.
    """
    merged = {}
    for output in outputs:
        for dataset, payload in output.items():
            if dataset not in merged:
                merged[dataset] = {"records": [payload["records"]], "cutflow": payload["cutflow"].copy()}
            else:
                merged[dataset]["records"].append(payload["records"])
                merged[dataset]["cutflow"] = merged[dataset]["cutflow"] + payload["cutflow"]

    for payload in merged.values():
        payload["records"] = ak.concatenate(payload["records"], axis=0)
    return merged


def write_ntuple(dest, records):
    """Write ``records`` to ``dest`` as a flat TTree holding exactly ``OUTPUT_BRANCHES``."""
    os.makedirs(os.path.dirname(str(dest)) or ".", exist_ok=True)
    types = branch_types()
    with uproot.recreate(dest) as fout:
        fout.mktree(TREE_NAME, types)
        if len(records) > 0:
            fout[TREE_NAME].extend({
                name: ak.to_numpy(records[name]).astype(dtype)
                for name, dtype in types.items()
            })
    logger.info("Wrote %d records to %s", len(records), dest)
    return len(records)


def cutflow_report(cutflow):
    """Ordered ``{cut: events}`` report; one log line per cut."""
    counts = cutflow_counts(cutflow)
    total = counts.get("no_cuts", 0)
    for cut, n in counts.items():
        eff = (n / total * 100) if total else 0.0
        logger.info("  %-28s %10d  (%.2f%%)", cut, n, eff)
    return counts


def save_cutflow(path, cutflow):
    """Save the cutflow report as JSON."""
    counts = cutflow_counts(cutflow)
    os.makedirs(os.path.dirname(str(path)) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as file:
        json.dump(counts, file, indent=2)
    logger.info("Saved cutflow to %s", path)
    return counts
