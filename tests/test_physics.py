"""Tests for vbscoffea.physics: Lorentz-vector views, angular distance and pair mass."""

import awkward as ak
import numpy as np
import pytest

from vbscoffea.physics import lorentz_vectors, pair_mass


def _vectors(pts, etas, phis, masses=None):
    fields = {"pt": pts, "eta": etas, "phi": phis}
    if masses is not None:
        fields["mass"] = masses
    return lorentz_vectors(ak.zip(fields))


class TestLorentzVectors:
    def test_massless_without_mass_field(self):
        p4 = _vectors([[10.0]], [[0.0]], [[0.0]])
        assert ak.flatten(p4.mass).tolist() == [0.0]
        assert ak.flatten(p4.x).tolist() == pytest.approx([10.0])

    def test_explicit_mass_overrides_field(self):
        coll = ak.zip({"pt": [[10.0]], "eta": [[0.0]], "phi": [[0.0]], "mass": [[5.0]]})
        p4 = lorentz_vectors(coll, mass=ak.zeros_like(coll.pt))
        assert ak.flatten(p4.mass).tolist() == [0.0]

    def test_keeps_jagged_structure(self):
        p4 = _vectors([[10.0, 20.0], []], [[0.0, 1.0], []], [[0.0, 1.0], []])
        assert ak.num(p4).tolist() == [2, 0]


class TestDeltaR:
    def test_wraps_across_pi(self):
        a = _vectors([[50.0]], [[0.0]], [[3.0]])
        b = _vectors([[50.0]], [[0.0]], [[-3.0]])
        assert ak.flatten(a.deltaR(b)).tolist() == pytest.approx([2 * np.pi - 6.0], abs=1e-4)

    def test_eta_and_phi_combine(self):
        a = _vectors([[50.0]], [[0.0]], [[0.0]])
        b = _vectors([[50.0]], [[0.3]], [[0.4]])
        assert ak.flatten(a.deltaR(b)).tolist() == pytest.approx([0.5])

    def test_symmetric(self):
        a = _vectors([[50.0]], [[1.2]], [[2.9]])
        b = _vectors([[50.0]], [[-0.4]], [[-3.1]])
        assert ak.flatten(a.deltaR(b)).tolist() == pytest.approx(ak.flatten(b.deltaR(a)).tolist())


class TestPairMass:
    def test_back_to_back_massless(self):
        p1 = _vectors([[45.0]], [[0.0]], [[0.0]])
        p2 = _vectors([[45.0]], [[0.0]], [[np.pi]])
        assert ak.flatten(pair_mass(p1, p2)).tolist() == pytest.approx([90.0])

    def test_forward_backward_pair(self):
        expected = np.sqrt(2 * 50.0 * 50.0 * (np.cosh(5.0) + 1.0))
        p1 = _vectors([[50.0]], [[2.5]], [[0.0]])
        p2 = _vectors([[50.0]], [[-2.5]], [[np.pi]])
        assert ak.flatten(pair_mass(p1, p2)).tolist() == pytest.approx([expected])

    def test_collinear_massless_clamped_to_zero(self):
        def f32(value):
            return ak.values_astype([[value]], np.float32)

        p1 = _vectors(f32(123.4), f32(1.7), f32(0.3))
        p2 = _vectors(f32(56.7), f32(1.7), f32(0.3))
        (mass,) = ak.flatten(pair_mass(p1, p2)).tolist()
        assert mass >= 0.0
        assert mass == pytest.approx(0.0, abs=1.0)

    def test_massive_legs_at_rest(self):
        p1 = _vectors([[0.0]], [[0.0]], [[0.0]], [[3.0]])
        p2 = _vectors([[0.0]], [[0.0]], [[0.0]], [[4.0]])
        assert ak.flatten(pair_mass(p1, p2)).tolist() == pytest.approx([7.0])
