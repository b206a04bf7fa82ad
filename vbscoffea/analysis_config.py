"""Lightweight configuration for the VBS flat ntupler.

Keep this module dependency-free so it can be shipped to Dask workers cheaply.
Thresholds live in an immutable ``SelectionConfig`` that is passed into every
selection step, so differently configured runs never share state.
"""

import dataclasses
import json
from dataclasses import dataclass, field

# Particle masses (GeV)
MUON_MASS = 0.1056583745
ELE_MASS = 0.000511
W_MASS = 80.385
Z_MASS = 91.1876

# Fill value for absent objects in the output record.
SENTINEL = -999.0

# Sample lists hold bare LFNs; the redirector is prepended when reading.
DEFAULT_REDIRECTOR = "root://cmseos.fnal.gov/"

# --- Selection name constants (single source of truth for string keys) ---------
#
# Used for PackedSelection.add() names and cutflow bookkeeping.
SEL_TRIGGER = "trigger"
SEL_TIGHT_LEPTON = "has_tight_lepton"
SEL_MAX_TWO_VETO = "max_two_veto_leptons"
SEL_NO_MIXED_FLAVOR_MU = "no_mixed_flavor_mu"
SEL_NO_MIXED_FLAVOR_E = "no_mixed_flavor_e"
SEL_NO_EXTRA_VETO_MU = "no_extra_veto_muon"
SEL_NO_EXTRA_VETO_E = "no_extra_veto_electron"
SEL_MIN_CLEAN_AK4 = "min_clean_ak4_jets"
SEL_BOOSTED_OR_RESOLVED = "boosted_or_resolved"
SEL_VBF_J1 = "has_vbf_jet1"
SEL_VBF_J2 = "has_vbf_jet2"

PRESELECTION = (
    SEL_TRIGGER,
    SEL_TIGHT_LEPTON,
    SEL_MAX_TWO_VETO,
    SEL_NO_MIXED_FLAVOR_MU,
    SEL_NO_MIXED_FLAVOR_E,
    SEL_NO_EXTRA_VETO_MU,
    SEL_NO_EXTRA_VETO_E,
)

# Order matters: each cutflow entry counts events passing it and all before it.
CUTFLOW_ORDER = PRESELECTION + (
    SEL_MIN_CLEAN_AK4,
    SEL_BOOSTED_OR_RESOLVED,
    SEL_VBF_J1,
    SEL_VBF_J2,
)

OUTPUT_BRANCHES = (
    "run", "evt",
    "lep1_pt", "lep1_eta", "lep1_phi", "lep1_m", "lep1_q", "lep1_iso",
    "lep2_pt", "lep2_eta", "lep2_phi", "lep2_m", "lep2_q", "lep2_iso",
    "bos_PuppiAK8_m_sd0_corr", "bos_PuppiAK8_pt",
    "nBtag_loose", "nBtag_medium", "nBtag_tight",
)


@dataclass(frozen=True)
class SelectionConfig:
    """Physics thresholds for one ntupler run (GeV for momenta and masses)."""

    # leptons
    lepton_veto_pt: float = 20.0
    muon_pt_min: float = 35.0
    muon_eta_max: float = 2.4
    electron_pt_min: float = 35.0
    electron_eta_max: float = 2.5
    muon_veto_id: str = "looseId"
    muon_tight_id: str = "tightId"
    electron_veto_id: int = 1
    electron_tight_id: int = 4

    # AK8 jets
    ak8_pt_min: float = 200.0
    ak8_eta_max: float = 2.4
    ak8_msoftdrop_min: float = 40.0
    ak8_msoftdrop_max: float = 150.0

    # AK4 jets
    ak4_pt_min: float = 30.0
    ak4_eta_max: float = 2.4
    min_clean_ak4_jets: int = 3

    # cleaning radii
    dr_ak8_lepton: float = 1.0
    dr_ak4_ak8: float = 0.8
    dr_ak4_ak4: float = 0.3
    dr_ak4_lepton: float = 0.3

    # candidates
    boson_mass: float = W_MASS
    mjj_boson_min: float = 40.0
    mjj_boson_max: float = 150.0
    mjj_vbf_min: float = 500.0

    # b-tagging (DeepCSV working points)
    btag_pt_min: float = 30.0
    btag_eta_max: float = 2.4
    btag_loose: float = 0.1241
    btag_medium: float = 0.4184
    btag_tight: float = 0.7527

    trigger_paths: tuple[str, ...] = (
        "IsoMu24",
        "IsoMu27",
        "Ele27_WPTight_Gsf",
        "Ele32_WPTight_Gsf",
        "Ele35_WPTight_Gsf",
    )
    # Shifted jet pt/msoftdrop branches are named <field>_<variation>.
    jet_variations: tuple[str, ...] = field(default=("jesTotalUp", "jesTotalDown"))

    def __post_init__(self):
        if not (self.btag_loose < self.btag_medium < self.btag_tight):
            raise ValueError(
                "b-tag working points must be strictly increasing "
                f"(loose={self.btag_loose}, medium={self.btag_medium}, tight={self.btag_tight})"
            )
        if self.mjj_boson_min > self.mjj_boson_max:
            raise ValueError(
                f"Empty boson mass window [{self.mjj_boson_min}, {self.mjj_boson_max}]"
            )
        if self.ak8_msoftdrop_min > self.ak8_msoftdrop_max:
            raise ValueError(
                f"Empty soft-drop mass window [{self.ak8_msoftdrop_min}, {self.ak8_msoftdrop_max}]"
            )
        for name in ("dr_ak8_lepton", "dr_ak4_ak8", "dr_ak4_ak4", "dr_ak4_lepton"):
            if getattr(self, name) < 0:
                raise ValueError(f"Cleaning radius '{name}' must be >= 0")
        if self.min_clean_ak4_jets < 0:
            raise ValueError("min_clean_ak4_jets must be >= 0")

    def with_overrides(self, **overrides) -> "SelectionConfig":
        """Return a copy with the given thresholds replaced."""
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown selection option(s): {unknown}. Valid options: {sorted(known)}")
        for key in ("trigger_paths", "jet_variations"):
            if key in overrides:
                overrides[key] = tuple(overrides[key])
        return dataclasses.replace(self, **overrides)

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


DEFAULT_CONFIG = SelectionConfig()


def load_config(path) -> SelectionConfig:
    """Build a ``SelectionConfig`` from a JSON file of overrides.

    Keys not present in the file keep their defaults.
    """
    try:
        with open(path, "r", encoding="utf-8") as file:
            overrides = json.load(file)
    except (OSError, json.JSONDecodeError) as e:
        raise RuntimeError(f"Failed to read selection config {path}: {e}") from e
    if not isinstance(overrides, dict):
        raise ValueError(f"Selection config {path} must contain a JSON object")
    return DEFAULT_CONFIG.with_overrides(**overrides)
