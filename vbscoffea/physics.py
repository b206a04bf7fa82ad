"""Four-vector helpers on top of coffea's vector behavior.

Collections are viewed as ``PtEtaPhiMLorentzVector`` records so angular
distances come from ``deltaR`` and pair masses from four-vector addition.
"""

import awkward as ak
import numpy as np
from coffea.nanoevents.methods import vector

ak.behavior.update(vector.behavior)


def lorentz_vectors(collection, mass=None):
    """View a collection with ``pt``/``eta``/``phi`` as Lorentz vectors.

    ``mass`` defaults to the collection's ``mass`` field, or zero for
    collections without one (e.g. leptons built from selection-only fields).
    """
    if mass is None:
        mass = collection.mass if "mass" in ak.fields(collection) else ak.zeros_like(collection.pt)
    return ak.zip(
        {
            "pt": collection.pt,
            "eta": collection.eta,
            "phi": collection.phi,
            "mass": mass,
        },
        with_name="PtEtaPhiMLorentzVector",
        behavior=vector.behavior,
    )


def pair_mass(p1, p2):
    """Invariant mass of ``p1 + p2``.

    Rounding can push m^2 slightly below zero for (nearly) massless collinear
    pairs; such values are clamped to a zero mass.
    """
    return np.sqrt(np.maximum((p1 + p2).mass2, 0.0))
