"""Tests for bin/run_ntupler.py argument handling and the serial driver."""

import os
import sys

import pytest

BIN_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "bin",
)
if BIN_DIR not in sys.path:
    sys.path.insert(0, BIN_DIR)

import run_ntupler
from vbscoffea.analysis_config import DEFAULT_REDIRECTOR


def test_defaults(tmp_path):
    args = run_ntupler.build_parser().parse_args([str(tmp_path / "WZ.txt")])
    assert args.redirector == DEFAULT_REDIRECTOR
    assert args.workers == 1
    assert args.output is None and args.config is None and args.maxfiles is None
    assert not args.debug


def test_missing_sample_list_rejected(tmp_path):
    with pytest.raises(SystemExit):
        run_ntupler.main([str(tmp_path / "missing.txt")])


def test_bad_worker_count_rejected(tmp_path):
    sample_list = tmp_path / "WZ.txt"
    sample_list.write_text("/store/a.root\n")
    with pytest.raises(SystemExit):
        run_ntupler.main([str(sample_list), "--workers", "0"])


def test_empty_sample_list_fails(tmp_path):
    sample_list = tmp_path / "WZ.txt"
    sample_list.write_text("# nothing here\n")
    assert run_ntupler.main([str(sample_list)]) == 1


def test_serial_run_writes_output(tmp_path, monkeypatch):
    from vbscoffea.ntupler import NtupleResult
    import awkward as ak
    import numpy as np
    from coffea.analysis_tools import PackedSelection
    from vbscoffea.histograms import fill_cutflow

    sample_list = tmp_path / "WZ.txt"
    sample_list.write_text("/store/a.root\n/store/b.root\n/store/c.root\n")
    seen = []

    def empty_cutflow():
        sel = PackedSelection()
        sel.add("a", np.array([False]))
        return fill_cutflow(sel, steps=("a",))

    def fake_ntuple_file(path, config, dataset):
        seen.append((path, dataset))
        return NtupleResult(
            path=path, n_events=0, n_selected=0, elapsed_s=0.0,
            output={dataset: {"records": ak.Array([]), "cutflow": empty_cutflow()}},
        )

    written = {}

    def fake_write_ntuple(dest, records):
        written["dest"] = dest
        return len(records)

    monkeypatch.setattr(run_ntupler, "ntuple_file", fake_ntuple_file)
    monkeypatch.setattr(run_ntupler, "write_ntuple", fake_write_ntuple)

    out = tmp_path / "out.root"
    assert run_ntupler.main([str(sample_list), "--output", str(out), "--maxfiles", "2"]) == 0
    assert seen == [(DEFAULT_REDIRECTOR + "/store/a.root", "WZ"), (DEFAULT_REDIRECTOR + "/store/b.root", "WZ")]
    assert written["dest"] == out
    assert (tmp_path / "out_cutflow.json").exists()
