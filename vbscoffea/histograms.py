"""Cutflow histograms for the VBS ntupler.

The cutflow is a one-axis ``hist.Hist`` whose StrCategory bin labels are the
cut names, starting with ``no_cuts``.  Each bin counts events passing that cut
and every cut before it, so histograms from different files can simply be
added together.
"""

import hist

from vbscoffea.analysis_config import CUTFLOW_ORDER

NO_CUTS = "no_cuts"


def cutflow_labels(steps=CUTFLOW_ORDER):
    return [NO_CUTS] + list(steps)


def _relabel_cutflow(h_raw, cut_names):
    """Convert an Integer-axis cutflow histogram to one with StrCategory axis."""
    h = hist.Hist(
        hist.axis.StrCategory(cut_names, name="cut"),
        storage=h_raw.storage_type(),
    )
    h.view(flow=False)[...] = h_raw.view(flow=False)
    return h


def fill_cutflow(selections, steps=CUTFLOW_ORDER):
    """Cumulative unweighted event counts through ``steps`` of a ``PackedSelection``."""
    cf = selections.cutflow(*steps)
    _h_onecut, h_cum, _labels = cf.yieldhist(weighted=False)
    return _relabel_cutflow(h_cum, cutflow_labels(steps))


def cutflow_counts(h):
    """Ordered ``{cut: count}`` view of a cutflow histogram."""
    labels = list(h.axes["cut"])
    values = h.values(flow=False)
    return {label: int(round(value)) for label, value in zip(labels, values)}
