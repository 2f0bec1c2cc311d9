import os
from typing import Dict


# Allow overriding numeric extraction settings via env var.
# Format: "epsilon:0.02,z_pixfwd:1300"
def _build_numeric_overrides() -> Dict[str, float]:
    overrides: Dict[str, float] = {}
    env_value = os.getenv("TRACKERGEO_OVERRIDES", "")
    if not env_value:
        return overrides
    for item in env_value.split(","):
        item = item.strip()
        if not item or ":" not in item:
            continue
        key, value = item.split(":", 1)
        key = key.strip().lower()
        if key not in ExtractorConfig.DEFAULT_NUMERIC:
            continue
        try:
            overrides[key] = float(value)
        except ValueError:
            continue
    return overrides


class ExtractorConfig:
    """Naming tags, namespaces and numeric constants used during extraction"""

    # Lengths in mm
    DEFAULT_NUMERIC = {
        'epsilon': 0.01,            # clearance added around containers
        'z_pixfwd': 1325.0,         # axial offset of the endcap container
    }

    DEFAULT_NAMES = {
        # namespaces
        'namespace': 'tracker',
        'new_namespace': 'newtracker',
        'barrel_namespace': 'pixbar',
        'endcap_namespace': 'pixfwd',
        # top level containers
        'barrel_container': 'Barrel',
        'endcap_container': 'Endcap',
        'barrel_parent': '2OTBarrel',
        'endcap_parent': '2OTForward',
        'tracker': 'Tracker',
        # volumes
        'layer': 'Layer',
        'disc': 'Disc',
        'rod': 'Rod',
        'ring': 'Ring',
        'barrel_module': 'BModule',
        'endcap_module': 'EModule',
        'wafer': 'Wafer',
        'active': 'Active',
        'lower': 'Lower',
        'upper': 'Upper',
        'ps': 'PS',
        '2s': '2S',
        'pixel': 'Pixel',
        'strip': 'Strip',
        'plus': 'Plus',
        'minus': 'Minus',
        'cone': 'Cone',
        'tub': 'Tub',
        'stereo': 'stereo',
        # inactive volumes
        'service': 'ser',
        'service_composite': 'sercomp',
        'support': 'lazy',
        'support_composite': 'lazycomp',
        'hybrid_composite': 'hybridcomposite',
        # materials
        'air': 'materials:Air',
        'sensor_silicon': 'SenSi',
        # rotations
        'unflipped_rotation': 'HCZ2YX',
        'flipped_rotation': 'FlippedHCZ2YX',
        'flip_rotation': 'Y180',
        # algorithms
        'phialt_algo': 'track:DDTrackerPhiAltAlgo',
        'ring_algo': 'track:DDTrackerRingAlgo',
        # topology
        'structure': 'TkDDDStructure',
        'par_tail': 'Par',
        'barrel_layer': 'TOBLayer',
        'barrel_rod': 'TOBRod',
        'barrel_stack': 'TOBStack',
        'barrel_det': 'TOBDet',
        'endcap_wheel': 'TIDWheel',
        'endcap_ring': 'TIDRing',
        'endcap_stack': 'TIDStack',
        'endcap_det': 'TIDDet',
    }

    def __init__(self, names=None, numeric=None, use_env=True):
        """
        Parameters:
        -----------
        names : dict, optional
            Override default naming tags
        numeric : dict, optional
            Override default numeric settings (epsilon, z_pixfwd)
        use_env : bool
            Apply TRACKERGEO_OVERRIDES from the environment
        """
        self.names = dict(self.DEFAULT_NAMES)
        if names:
            self.names.update(names)

        values = dict(self.DEFAULT_NUMERIC)
        if use_env:
            values.update(_build_numeric_overrides())
        if numeric:
            unknown = set(numeric) - set(self.DEFAULT_NUMERIC)
            if unknown:
                raise ValueError(f"Unknown numeric settings: {sorted(unknown)}")
            values.update(numeric)

        self.epsilon = float(values['epsilon'])
        self.z_pixfwd = float(values['z_pixfwd'])

    def tag(self, key):
        return self.names[key]

    def qualified(self, namespace_key, key):
        """Return '<namespace>:<tag>' for two naming keys"""
        return f"{self.names[namespace_key]}:{self.names[key]}"


def get_extractor_config(**kwargs):
    return ExtractorConfig(**kwargs)
