"""Event input handling: required NanoAOD fields, shape checks, and
conversion of a single event mapping into a one-event awkward array.

The selection code only reads ``events.<Collection>.<field>``, ``events.HLT``,
``events.run`` and ``events.event``, so coffea NanoEvents, zipped awkward
records and the arrays built here are interchangeable.
"""

from __future__ import annotations

from collections.abc import Mapping

import awkward as ak
import numpy as np

from vbscoffea.analysis_config import DEFAULT_CONFIG


class MalformedEventError(ValueError):
    """Raised when an event's collections are inconsistent and cannot be processed."""


# Required per-object fields and the dtype used when building arrays from Python values.
REQUIRED_FIELDS: dict[str, dict[str, type]] = {
    "Muon": {
        "pt": np.float32,
        "eta": np.float32,
        "phi": np.float32,
        "charge": np.int32,
        "pfRelIso04_all": np.float32,
        "looseId": np.bool_,
        "tightId": np.bool_,
    },
    "Electron": {
        "pt": np.float32,
        "eta": np.float32,
        "phi": np.float32,
        "charge": np.int32,
        "pfRelIso03_all": np.float32,
        "cutBased": np.int32,
    },
    "Jet": {
        "pt": np.float32,
        "eta": np.float32,
        "phi": np.float32,
        "mass": np.float32,
        "btagDeepB": np.float32,
    },
    "FatJet": {
        "pt": np.float32,
        "eta": np.float32,
        "phi": np.float32,
        "msoftdrop": np.float32,
    },
}

# Extra per-object fields (e.g. Jet_pt_jesTotalUp) are carried as float32.
_EXTRA_FIELD_DTYPE = np.float32


def _to_numpy(values, dtype, where):
    try:
        array = np.asarray(values, dtype=dtype)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"{where}: cannot interpret values as {np.dtype(dtype)}: {e}") from e
    if array.ndim != 1:
        raise MalformedEventError(f"{where}: expected a flat list of values, got {array.ndim}-dimensional input")
    return array


def _collection_from_mapping(name, columns):
    """Zip one collection's parallel attribute lists into a one-event jagged record array."""
    required = REQUIRED_FIELDS[name]
    if columns is None:
        columns = {}
    if not isinstance(columns, Mapping):
        raise MalformedEventError(f"{name}: expected a mapping of field -> values, got {type(columns).__name__}")

    if columns:
        missing = sorted(set(required) - set(columns))
        if missing:
            raise MalformedEventError(f"{name}: missing required field(s) {missing}")

    arrays = {}
    for field, dtype in required.items():
        arrays[field] = _to_numpy(columns.get(field, []), dtype, f"{name}.{field}")
    for field, values in columns.items():
        if field not in arrays:
            arrays[field] = _to_numpy(values, _EXTRA_FIELD_DTYPE, f"{name}.{field}")

    lengths = {field: len(values) for field, values in arrays.items()}
    if len(set(lengths.values())) > 1:
        raise MalformedEventError(f"{name}: attribute arrays have different lengths {lengths}")

    n_objects = next(iter(lengths.values()))
    return ak.zip({
        field: ak.unflatten(values, [n_objects])
        for field, values in arrays.items()
    })


def event_from_mapping(event: Mapping, trigger_paths=None) -> ak.Array:
    """Build a one-event awkward array from a plain mapping.

    Expected layout::

        {"run": 1, "event": 42,
         "HLT": {"IsoMu24": True, ...},
         "Muon": {"pt": [...], "eta": [...], ...},
         "Electron": {...}, "Jet": {...}, "FatJet": {...}}

    A collection that is absent is treated as empty.  The HLT record always
    carries exactly ``trigger_paths`` (default: the configured paths), with
    paths absent from the mapping set to False, so single events can be
    concatenated into one chunk.  Raises ``MalformedEventError`` for
    inconsistent attribute lengths, missing required fields or values of the
    wrong type.
    """
    if not isinstance(event, Mapping):
        raise MalformedEventError(f"Expected an event mapping, got {type(event).__name__}")
    for key in ("run", "event"):
        if key not in event:
            raise MalformedEventError(f"Event is missing '{key}'")
    if trigger_paths is None:
        trigger_paths = DEFAULT_CONFIG.trigger_paths

    fields = {
        "run": _to_numpy([event["run"]], np.int64, "run"),
        "event": _to_numpy([event["event"]], np.int64, "event"),
    }

    hlt = event.get("HLT") or {}
    if not isinstance(hlt, Mapping):
        raise MalformedEventError(f"HLT: expected a mapping of path -> bool, got {type(hlt).__name__}")
    if trigger_paths:
        fields["HLT"] = ak.zip({
            path: _to_numpy([bool(hlt.get(path, False))], np.bool_, f"HLT.{path}")
            for path in trigger_paths
        })

    for name in REQUIRED_FIELDS:
        fields[name] = _collection_from_mapping(name, event.get(name))

    return ak.zip(fields, depth_limit=1)


def validate_events(events):
    """Check that every required field exists and per-object lengths agree.

    Works on any columnar events object (NanoEvents or zipped awkward).
    """
    for name, required in REQUIRED_FIELDS.items():
        try:
            collection = getattr(events, name)
        except AttributeError as e:
            raise MalformedEventError(f"Events have no '{name}' collection") from e

        counts = None
        for field in required:
            try:
                values = collection[field]
            except (AttributeError, KeyError, IndexError, ValueError) as e:
                raise MalformedEventError(f"{name}: missing required field '{field}'") from e
            n = ak.num(values, axis=1)
            if counts is None:
                counts = n
            elif not ak.all(n == counts):
                raise MalformedEventError(f"{name}.{field}: length differs from other {name} fields")
