from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pytest

from trackergeo.detector_config import ExtractorConfig
from trackergeo.model.layout_builder import ModuleType, TiltedRingLayout, build_barrel_layer, build_endcap_disc
from trackergeo.model.materials import Distribution, MaterialEntry, MaterialRow, MaterialTable, SubVolumeKind
from trackergeo.model.tracker import Tracker


DATA_DIR = Path(__file__).resolve().parent.parent / "data"


# --- Materials -----------------------------------------------------------------

@pytest.fixture
def material_table():
    return MaterialTable([
        MaterialRow("SenSi", 2.329, 21.82, 108.4),
        MaterialRow("Cu", 8.96, 12.86, 137.3),
        MaterialRow("CF", 1.75, 42.7, 85.8),
        MaterialRow("Kapton", 1.42, 40.58, 85.8),
        MaterialRow("Al", 2.699, 24.01, 107.2),
    ])


@pytest.fixture
def config():
    return ExtractorConfig(use_env=False)


MODULE_MATERIALS = (
    MaterialEntry("SenSi", 10.0, "2S Sensors"),
    MaterialEntry("Cu", 2.0, "Hybrid", Distribution.FRONT_BACK_SPLIT),
    MaterialEntry("Kapton", 1.0, "Hybrid", Distribution.UNIFORM_FOUR_WAY),
    MaterialEntry("CF", 3.0, "Support", SubVolumeKind.SUPPORT_PLATE),
    MaterialEntry("Al", 0.5, "Readout", Distribution.LEFT_RIGHT_SPLIT),
)


def make_type(**overrides):
    values = dict(
        name="2S",
        length=100.0,
        width=90.0,
        sensor_thickness=0.3,
        module_type="pt2S",
        num_sensors=2,
        ds_distance=1.8,
        front_end_hybrid_width=10.0,
        service_hybrid_width=5.0,
        hybrid_thickness=0.25,
        support_plate_thickness=0.5,
        materials=MODULE_MATERIALS,
    )
    values.update(overrides)
    return ModuleType(**values)


@pytest.fixture
def module_type():
    return make_type()


@pytest.fixture
def type_factory():
    return make_type


# --- Trackers ------------------------------------------------------------------

@pytest.fixture
def flat_tracker(material_table, module_type):
    """One flat layer: 8 rods at r=500 mm, 3 modules per rod and side"""
    layer = build_barrel_layer(500.0, 8, 3, module_type, material_table, rod_stagger=4.0)
    return Tracker(barrel_layers=[layer])


@pytest.fixture
def tilted_tracker(material_table, module_type):
    """One layer with 2 flat rings and a ring tilted by 60 deg at z=300 mm"""
    layer = build_barrel_layer(250.0, 6, 2, module_type, material_table,
                               tilted_rings=[TiltedRingLayout(300.0, 260.0, 60.0)])
    return Tracker(barrel_layers=[layer])


@pytest.fixture
def endcap_tracker(material_table, module_type):
    """Two mirrored discs at |z|=1500 mm with a wedge ring and a rectangular ring"""
    wedge = make_type(name="2S_wedge", width=70.0, max_width=95.0)
    rings = [(300.0, 20, wedge), (420.0, 24, module_type)]
    discs = [build_endcap_disc(z, rings, material_table) for z in (-1500.0, 1500.0)]
    return Tracker(endcap_discs=discs)
