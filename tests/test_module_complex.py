import math

import numpy as np
import pytest

from trackergeo.errors import SensorMaterialError, UnknownTargetVolumeError
from trackergeo.geometry_extraction.module_complex import decompose, resolve_target
from trackergeo.model.layout_builder import make_capsule, make_module
from trackergeo.model.materials import Distribution, MaterialEntry, SubVolumeKind
from trackergeo.model.tracker import UniRef


# --- Helpers -----------------------------------------------------------------

def _capsule(mtype, materials=None, center=(500.0, 0.0, 50.0)):
    module = make_module(mtype, center, (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0), UniRef(1, 1, 1))
    return make_capsule(module, mtype.materials if materials is None else materials)


# --- Template ----------------------------------------------------------------

def test_expanded_dimensions(module_type):
    dec = decompose(_capsule(module_type), "BModule1Layer1")
    assert dec.expanded_width == pytest.approx(100.0)
    assert dec.expanded_length == pytest.approx(120.0)
    # d + 2 * (support plate + sensor)
    assert dec.expanded_thickness == pytest.approx(1.8 + 2 * (0.5 + 0.3))


def test_sub_volume_template(module_type):
    dec = decompose(_capsule(module_type), "BModule1Layer1")
    names = [vol.name for vol in dec.sub_volumes]
    assert names == ["BModule1Layer1FSide", "BModule1Layer1BSide", "BModule1Layer1LSide",
                     "BModule1Layer1RSide", "BModule1Layer1Between", "BModule1Layer1SupportPlate"]

    front = dec.sub_volume(SubVolumeKind.FRONT)
    assert (front.dx, front.dy, front.dz) == pytest.approx((2.5, 50.0, 0.125))
    assert front.x == pytest.approx(47.5)
    assert dec.sub_volume(SubVolumeKind.BACK).x == pytest.approx(-47.5)

    left = dec.sub_volume(SubVolumeKind.LEFT)
    assert (left.dx, left.dy) == pytest.approx((50.0, 5.0))
    assert left.y == pytest.approx(55.0)
    assert dec.sub_volume(SubVolumeKind.RIGHT).y == pytest.approx(-55.0)

    plate = dec.sub_volume(SubVolumeKind.SUPPORT_PLATE)
    assert (plate.dx, plate.dy, plate.dz) == pytest.approx((50.0, 60.0, 0.25))
    assert plate.z == pytest.approx(-((1.8 + 0.5) / 2 + 0.3))

    for vol in dec.sub_volumes:
        assert vol.parent == "BModule1Layer1"
        assert vol.dx >= 0 and vol.dy >= 0 and vol.dz >= 0


# --- Envelope ----------------------------------------------------------------

def test_envelope_of_barrel_module(module_type):
    env = decompose(_capsule(module_type), "m").envelope
    half_t = 1.7
    assert env.xmin == pytest.approx(500.0 - half_t)
    assert env.xmax == pytest.approx(500.0 + half_t)
    assert (env.ymin, env.ymax) == pytest.approx((-50.0, 50.0))
    assert (env.zmin, env.zmax) == pytest.approx((-10.0, 110.0))
    # edge midpoints sit on y=0
    assert env.rmin == pytest.approx(500.0 - half_t)
    assert env.rmax == pytest.approx(math.hypot(500.0 + half_t, 50.0))
    assert env.rmin_at_zmin == pytest.approx(500.0 - half_t)
    assert env.rmax_at_zmax == pytest.approx(math.hypot(500.0 + half_t, 50.0))


def test_envelope_is_ordered_for_rotated_modules(module_type):
    for phi in np.linspace(0.0, 2 * np.pi, 7):
        radial = (math.cos(phi), math.sin(phi), 0.0)
        tangent = (-math.sin(phi), math.cos(phi), 0.0)
        center = (400.0 * radial[0], 400.0 * radial[1], -120.0)
        module = make_module(module_type, center, radial, tangent, (0.0, 0.0, 1.0), UniRef(-1, 1, 2))
        env = decompose(make_capsule(module, ()), "m").envelope
        assert env.xmin <= env.xmax
        assert env.ymin <= env.ymax
        assert env.zmin <= env.zmax
        assert env.rmin <= env.rmax
        assert env.rmin <= env.rmin_at_zmin <= env.rmax
        assert env.rmin <= env.rmax_at_zmax <= env.rmax


# --- Materials ---------------------------------------------------------------

def test_uniform_mass_is_conserved_over_the_hybrids(module_type):
    capsule = _capsule(module_type, [MaterialEntry("Kapton", 4.0, "Hybrid", Distribution.UNIFORM_FOUR_WAY)])
    dec = decompose(capsule, "m")
    hybrids = [dec.sub_volume(kind) for kind in (SubVolumeKind.FRONT, SubVolumeKind.BACK,
                                                 SubVolumeKind.LEFT, SubVolumeKind.RIGHT)]
    assert sum(vol.mass for vol in hybrids) == pytest.approx(4.0, rel=1e-9)
    # shares follow the volumes: 125 mm3 for F/B, 250 mm3 for L/R
    assert hybrids[0].mass == pytest.approx(4.0 / 6.0)
    assert hybrids[2].mass == pytest.approx(4.0 / 3.0)
    assert dec.sub_volume(SubVolumeKind.BETWEEN).mass == 0.0


def test_decomposition_summary(module_type):
    capsule = _capsule(module_type, [MaterialEntry("Kapton", 4.0, "Hybrid", Distribution.UNIFORM_FOUR_WAY)])
    summary = decompose(capsule, "m").summary()
    lines = summary.splitlines()
    assert lines[0] == "  Module Name: m"
    assert len(lines) == 4 + 6 + 1
    assert "    mFSide: mass=0.666667 g" in summary
    assert lines[-1] == "  Module Total Mass = 4 (4 is expected.)"


def test_targets_are_routed(module_type):
    dec = decompose(_capsule(module_type), "m")
    assert dec.sub_volume(SubVolumeKind.SUPPORT_PLATE).materials == {"CF": pytest.approx(3.0)}
    front, back = dec.sub_volume(SubVolumeKind.FRONT), dec.sub_volume(SubVolumeKind.BACK)
    assert front.materials["Cu"] == pytest.approx(1.0)
    assert back.materials["Cu"] == pytest.approx(1.0)
    assert "Cu" not in dec.sub_volume(SubVolumeKind.LEFT).materials
    assert dec.sub_volume(SubVolumeKind.LEFT).materials["Al"] == pytest.approx(0.25)


def test_sensor_components_are_not_assigned(module_type):
    dec = decompose(_capsule(module_type), "m")
    # 10 g of sensor silicon stays out of the sub-volumes
    assert dec.total_mass == pytest.approx(2.0 + 1.0 + 3.0 + 0.5)
    assert dec.expected_mass == pytest.approx(dec.total_mass)
    assert all("SenSi" not in vol.materials for vol in dec.sub_volumes)


def test_zero_volume_split_is_equal(type_factory):
    mtype = type_factory(hybrid_thickness=0.0)
    capsule = _capsule(mtype, [MaterialEntry("Cu", 2.0, "Hybrid", Distribution.FRONT_BACK_SPLIT)])
    dec = decompose(capsule, "m")
    assert dec.sub_volume(SubVolumeKind.FRONT).mass == pytest.approx(1.0)
    assert dec.sub_volume(SubVolumeKind.BACK).mass == pytest.approx(1.0)
    assert dec.sub_volume(SubVolumeKind.FRONT).density == 0.0


@pytest.mark.parametrize("target", [1, 2, "1", "sensor", "outer_sensor"])
def test_sensor_target_is_fatal(module_type, target):
    capsule = _capsule(module_type, [MaterialEntry("Cu", 1.0, "Hybrid", target)])
    with pytest.raises(SensorMaterialError) as excinfo:
        decompose(capsule, "m")
    assert excinfo.value.element == "Cu"


@pytest.mark.parametrize("target", [9, 35, "nowhere", None])
def test_unknown_target_is_fatal(module_type, target):
    capsule = _capsule(module_type, [MaterialEntry("Cu", 1.0, "Hybrid", target)])
    with pytest.raises(UnknownTargetVolumeError):
        decompose(capsule, "m")


def test_resolve_target_ids():
    assert resolve_target(34) is Distribution.FRONT_BACK_SPLIT
    assert resolve_target(56) is Distribution.LEFT_RIGHT_SPLIT
    assert resolve_target(3456) is Distribution.UNIFORM_FOUR_WAY
    assert resolve_target(0) is Distribution.UNIFORM_FOUR_WAY
    assert resolve_target("3") is SubVolumeKind.FRONT
    assert resolve_target(8) is SubVolumeKind.SUPPORT_PLATE
    assert resolve_target("Left_Right") is Distribution.LEFT_RIGHT_SPLIT
    assert resolve_target(SubVolumeKind.BETWEEN) is SubVolumeKind.BETWEEN


def test_densities_are_in_g_per_cm3(module_type):
    dec = decompose(_capsule(module_type), "m")
    plate = dec.sub_volume(SubVolumeKind.SUPPORT_PLATE)
    # 100 x 120 x 0.5 mm3 = 6 cm3
    assert plate.density == pytest.approx(3.0 / 6.0)
