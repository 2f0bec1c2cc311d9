import math

import pytest

from trackergeo.geometry_extraction.extractor import Extractor
from trackergeo.geometry_extraction.records import ShapeType
from trackergeo.model.layout_builder import build_barrel_layer
from trackergeo.model.tracker import Tracker


HALF_T = 1.7  # half expanded thickness of the test module


def _run(tracker, table, config, **kwargs):
    extractor = Extractor(tracker, table, config=config, verbose=False, **kwargs)
    return extractor, extractor.analyse()


# --- Flat layers -------------------------------------------------------------

def test_flat_layer_module_placements(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)

    for ring in (1, 2, 3):
        placements = records.placements_of(f"tracker:BModule{ring}Layer1")
        assert [p.copy for p in placements] == [1, 2]
        z = (ring - 0.5) * 100.0
        # rod 1 sits at 498 mm, which is also RadiusIn
        assert placements[0].translation == pytest.approx((0.0, 0.0, z))
        assert placements[1].translation == pytest.approx((0.0, 0.0, -z))
        assert all(p.parent == "tracker:Rod1" for p in placements)
        assert all(p.rotation == "tracker:HCZ2YX" for p in placements)


def test_missing_partner_gives_single_placement(material_table, module_type, config):
    layer = build_barrel_layer(500.0, 8, 3, module_type, material_table, rod_stagger=4.0)
    for rod in layer.rods:
        rod.capsules = [c for c in rod.capsules if not (c.module.uni_ref.side < 0 and c.module.uni_ref.ring == 3)]
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)

    assert len(records.placements_of("tracker:BModule3Layer1")) == 1
    assert len(records.placements_of("tracker:BModule2Layer1")) == 2


def test_flipped_modules_use_flipped_rotation(material_table, module_type, config):
    layer = build_barrel_layer(500.0, 8, 1, module_type, material_table, flipped=True)
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)
    placements = records.placements_of("tracker:BModule1Layer1")
    assert {p.rotation for p in placements} == {"tracker:FlippedHCZ2YX"}


def test_rod_and_layer_shapes(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)
    eps = config.epsilon

    rod = records.shape("Rod1")
    assert rod.type is ShapeType.BOX
    assert rod.dx == pytest.approx(50.0 + eps)
    assert rod.dy == pytest.approx(HALF_T + eps)
    # outermost ring at z=250 with a 120 mm expanded length
    assert rod.dz == pytest.approx(310.0 + eps)
    assert records.logical_volume("Rod1").material == "materials:Air"

    layer = records.shape("Layer1")
    assert layer.type is ShapeType.TUBE
    assert layer.rmin == pytest.approx(498.0 - HALF_T - 2 * eps)
    assert layer.rmax == pytest.approx(math.hypot(502.0 + HALF_T, 50.0) + 2 * eps)
    assert layer.dz == pytest.approx(310.0 + 2 * eps)
    placement = records.placements_of("tracker:Layer1")[0]
    assert placement.parent == "pixbar:2OTBarrel"


def test_phi_alternating_rod_replication(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)
    [algo] = [a for a in records.algorithms if a.name == "track:DDTrackerPhiAltAlgo"]
    assert algo.parent == "tracker:Layer1"
    assert algo.parameter("ChildName").value == "tracker:Rod1"
    assert algo.parameter("Number").value == 8
    assert algo.parameter("RadiusIn").value == pytest.approx(498.0)
    assert algo.parameter("RadiusOut").value == pytest.approx(502.0)
    assert algo.parameter("Tilt").value == pytest.approx(90.0)
    assert algo.parameter("Tilt").unit == "deg"

    n = algo.parameter("Number").value
    start = algo.parameter("StartAngle").value
    last = start + 360.0 / n * (n - 1)
    assert start <= last < start + 360.0


def test_wafers_and_active_surfaces(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)

    lower = records.shape("BModule1Layer1LowerWafer")
    assert (lower.dx, lower.dy, lower.dz) == pytest.approx((45.0, 50.0, 0.15))
    [placement] = records.placements_of("tracker:BModule1Layer1LowerWafer")
    assert placement.parent == "tracker:BModule1Layer1"
    assert placement.translation == pytest.approx((0.0, 0.0, -0.9))
    [placement] = records.placements_of("tracker:BModule1Layer1UpperWafer")
    assert placement.translation == pytest.approx((0.0, 0.0, 0.9))
    assert placement.rotation is None

    active = records.logical_volume("BModule1Layer1Lower2SActive")
    assert active.material == "tracker:SenSi"
    [placement] = records.placements_of("tracker:BModule1Layer1Upper2SActive")
    assert placement.parent == "tracker:BModule1Layer1UpperWafer"


def test_stereo_rotation_on_upper_wafer(material_table, type_factory, config):
    mtype = type_factory(stereo_rotation=math.radians(2.0))
    layer = build_barrel_layer(500.0, 8, 1, mtype, material_table)
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)

    rotation = records.rotations["stereoBModule1Layer1"]
    assert (rotation.theta_x, rotation.phi_x) == pytest.approx((90.0, 2.0))
    assert (rotation.theta_y, rotation.phi_y) == pytest.approx((90.0, 92.0))
    [placement] = records.placements_of("tracker:BModule1Layer1UpperWafer")
    assert placement.rotation == "tracker:stereoBModule1Layer1"


def test_ps_module_active_names(material_table, type_factory, config):
    layer = build_barrel_layer(300.0, 6, 1, type_factory(module_type="ptPS"), material_table)
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)
    names = {shape.name for shape in records.shapes}
    assert "BModule1Layer1LowerPSPixelActive" in names
    assert "BModule1Layer1UpperPSStripActive" in names


def test_single_sensor_module(material_table, type_factory, config):
    layer = build_barrel_layer(300.0, 6, 1, type_factory(num_sensors=1, module_type="ptPS"), material_table)
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)
    names = {shape.name for shape in records.shapes}
    assert "BModule1Layer1Wafer" in names
    assert "BModule1Layer1PSPixelActive" in names
    assert "BModule1Layer1LowerWafer" not in names


def test_unknown_module_type_is_skipped(material_table, type_factory, config, capsys):
    layer = build_barrel_layer(300.0, 6, 1, type_factory(module_type="ptXX"), material_table)
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)

    assert "Unknown module type : ptXX" in capsys.readouterr().out
    names = {shape.name for shape in records.shapes}
    assert "BModule1Layer1LowerWafer" in names
    assert not any(name.endswith("Active") for name in names)
    assert "Layer1" in names


def test_hybrid_sub_volumes(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)

    composite = records.composite("hybridcompositeBModule1Layer1FSide")
    assert sum(f for _, f in composite.elements) == pytest.approx(1.0, abs=1e-9)
    assert records.logical_volume("BModule1Layer1FSide").material == "tracker:hybridcompositeBModule1Layer1FSide"
    [placement] = records.placements_of("tracker:BModule1Layer1FSide")
    assert placement.parent == "tracker:BModule1Layer1"
    assert placement.translation == pytest.approx((47.5, 0.0, 0.0))
    # no material targets the space between the sensors
    assert "BModule1Layer1Between" not in {shape.name for shape in records.shapes}

    for composite in records.composites:
        assert sum(f for _, f in composite.elements) == pytest.approx(1.0, abs=1e-9)


def test_sensor_thickness_fallback(material_table, type_factory, config):
    layer = build_barrel_layer(500.0, 8, 1, type_factory(sensor_thickness=0.0), material_table)
    _, records = _run(Tracker(barrel_layers=[layer]), material_table, config)
    thickness = 10.0 / (2.329 * 1e-3 * 9000.0)
    assert records.shape("BModule1Layer1LowerWafer").dz == pytest.approx(thickness / 2.0)


def test_barrel_radiation_length_summary(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)
    [summary] = records.radiation_lengths
    capsule = flat_tracker.barrel_layers[0].rods[0].capsules[0]
    assert summary.barrel and summary.index == 1
    assert summary.radiation_length == pytest.approx(capsule.radiation_length)
    assert summary.interaction_length == pytest.approx(capsule.interaction_length)
    assert summary.radiation_length > 0


def test_barrel_topology_selectors(flat_tracker, material_table, config):
    _, records = _run(flat_tracker, material_table, config)
    assert records.selector("TOBLayerPar").part_selectors == ["Layer1"]
    assert records.selector("TOBLayerPar").parameter == ("TkDDDStructure", "TOBLayer")
    assert records.selector("TOBRodPar").part_selectors == ["Rod1"]
    assert records.selector("TOBStackPar").part_selectors == [f"BModule{r}Layer1" for r in (1, 2, 3)]
    det = records.selector("TOBDetPar")
    assert len(det.part_selectors) == 6
    assert {roc.name for roc in det.module_types} == {"pt2S"}


# --- Tilted layers -----------------------------------------------------------

def test_tilted_layer_rings(tilted_tracker, material_table, config):
    _, records = _run(tilted_tracker, material_table, config)

    for side, z in (("Plus", 300.0), ("Minus", -300.0)):
        name = f"Ring3Layer1{side}"
        ring = records.shape(name)
        assert ring.type is ShapeType.INTERSECTION
        assert (ring.solid1, ring.solid2) == (name + "Cone", name + "Tub")
        assert records.shape(name + "Cone").type is ShapeType.CONE
        [placement] = records.placements_of(f"tracker:{name}")
        assert placement.parent == "tracker:Layer1"
        assert placement.translation[2] == pytest.approx(z)

    # tilted modules are placed by the ring algorithm only
    assert records.placements_of("tracker:BModule3Layer1") == []
    assert len(records.placements_of("tracker:BModule1Layer1")) == 2


def test_tilted_ring_replication(tilted_tracker, material_table, config):
    _, records = _run(tilted_tracker, material_table, config)
    calls = [a for a in records.algorithms if a.name == "track:DDTrackerRingAlgo"]
    assert len(calls) == 4
    assert [a.parent for a in calls] == ["tracker:Ring3Layer1Plus"] * 2 + ["tracker:Ring3Layer1Minus"] * 2

    backward, forward = calls[0], calls[1]
    assert backward.parameter("N").value == 3
    assert backward.parameter("StartCopyNo").value == 1
    assert forward.parameter("StartCopyNo").value == 2
    assert backward.parameter("StartAngle").value == pytest.approx(90.0)
    assert forward.parameter("StartAngle").value == pytest.approx(150.0)
    assert backward.parameter("Radius").value == pytest.approx(260.0)
    assert backward.parameter("TiltAngle").value == pytest.approx(60.0)
    assert backward.parameter("IsZPlus").value == 1
    assert calls[2].parameter("IsZPlus").value == 0
    assert backward.parameter("Center").value == pytest.approx((0.0, 0.0, 0.0))


def test_tilted_layer_rod_covers_flat_part_only(tilted_tracker, material_table, config):
    _, records = _run(tilted_tracker, material_table, config)
    # flat rings at z=50 and z=150
    assert records.shape("Rod1").dz == pytest.approx(210.0 + config.epsilon)
    assert records.shape("Layer1").dz > 300.0


def test_tilted_cone_brackets_the_tube(tilted_tracker, material_table, config):
    _, records = _run(tilted_tracker, material_table, config)
    for side in ("Plus", "Minus"):
        cone = records.shape(f"Ring3Layer1{side}Cone")
        tub = records.shape(f"Ring3Layer1{side}Tub")
        assert cone.dz == pytest.approx(tub.dz)
        assert cone.rmin1 <= cone.rmax1
        assert cone.rmin2 <= cone.rmax2
        assert tub.rmin < tub.rmax
