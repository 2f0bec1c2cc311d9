"""
Extract the tracker geometry and material properties from a tracker model and
group them into records ready for translation to a geometry description.

The extraction runs as independent passes (containers, elements, layers,
discs, inactive volumes). Each pass returns a fresh RecordCollector; the
Extractor keeps the latest result of every pass and merges them, in a fixed
order, into the final bundle.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from trackergeo.detector_config import ExtractorConfig
from trackergeo.errors import UnknownModuleTypeError
from trackergeo.model.materials import InactiveElement, InactiveSurfaces, MaterialCategory, MaterialTable
from trackergeo.model.tracker import Module, ModuleCapsule, Tracker

from .envelope_utils import (
    Envelope,
    atomic_number,
    atomic_weight,
    calculate_sensor_thickness,
    find_partner_module,
    inactive_density,
    normalized_fractions,
)
from .layer_aggregator import DiscEntry, LayerEntry, aggregate_layers
from .module_complex import ModuleDecomposition, decompose
from .records import (
    AlgoParameter,
    CompositeMaterial,
    ElementaryMaterial,
    LogicalVolume,
    ModuleROCInfo,
    Placement,
    RadiationLengthSummary,
    RecordCollector,
    ReplicationAlgorithmCall,
    Rotation,
    Shape,
    ShapeType,
    TopologySelector,
)


PASS_ORDER = ('containers', 'elements', 'layers', 'discs', 'inactive')

BARREL_SUPPORTS = (MaterialCategory.BARREL_SUPPORT, MaterialCategory.TUBE_SUPPORT,
                   MaterialCategory.USER_SUPPORT, MaterialCategory.OUTER_SUPPORT)
CENTERED_SUPPORTS = (MaterialCategory.OUTER_SUPPORT, MaterialCategory.TUBE_SUPPORT)


@dataclass
class TiltedRingInfo:
    """One z side of a tilted barrel ring"""
    name: str
    child_name: str
    is_z_plus: int
    tilt_angle: float       # deg
    bw_flipped: bool
    fw_flipped: bool
    phi: int
    modules: int
    r1: float
    z1: float
    r2: float
    z2: float
    rmin: float
    rmax: float
    zmin: float
    zmax: float
    rmin_at_zmin: float
    rmax_at_zmax: float


@dataclass
class EndcapRingInfo:
    name: str
    child_name: str
    is_z_plus: int
    fw_flipped: bool
    phase: float            # deg
    modules: int
    module_thickness: float
    rmin: float
    rmid: float
    rmax: float
    zmin: float
    zmax: float
    zfw: float
    zbw: float


class Extractor:
    """
    Parameters:
    -----------
    tracker : Tracker
        Tracker model; read only
    material_table : MaterialTable
        Global table of elementary materials
    inactive : InactiveSurfaces, optional
        Services and supports
    config : ExtractorConfig, optional
        Naming tags and numeric settings
    write_tracker : bool
        Standalone tracker mode: alternate namespace and no top-level containers
    verbose : bool
        Print progress messages
    """

    def __init__(self, tracker: Tracker, material_table: MaterialTable,
                 inactive: Optional[InactiveSurfaces] = None, config: Optional[ExtractorConfig] = None,
                 write_tracker=False, verbose=True):
        self.tracker = tracker
        self.material_table = material_table
        self.inactive = inactive if inactive is not None else InactiveSurfaces()
        self.config = config if config is not None else ExtractorConfig()
        self.write_tracker = write_tracker
        self.verbose = verbose
        self.namespace = self.config.tag('new_namespace' if write_tracker else 'namespace')
        self.results: Dict[str, RecordCollector] = {}

    # ------------------------------------------------------------------
    # orchestration

    def analyse(self) -> RecordCollector:
        """Run every pass and return the merged records"""
        self._log("Starting analysis...")
        self.results.clear()
        for name in PASS_ORDER:
            if name == 'containers' and self.write_tracker:
                continue
            self.run_pass(name)
        self._log("Analysis done.")
        return self.bundle()

    def run_pass(self, name) -> RecordCollector:
        """Run one pass, replacing whatever that pass produced before"""
        passes = {
            'containers': self.analyse_containers,
            'elements': self.analyse_elements,
            'layers': self.analyse_layers,
            'discs': self.analyse_discs,
            'inactive': self.analyse_inactive,
        }
        if name not in passes:
            raise ValueError(f"Unknown pass {name!r}, expected one of {PASS_ORDER}")
        result = passes[name]()
        self.results[name] = result
        return result

    def bundle(self) -> RecordCollector:
        out = RecordCollector()
        for rotation in self.fixed_rotations():
            out.add_rotation(rotation)
        for name in PASS_ORDER:
            if name in self.results:
                out.merge(self.results[name])
        return out

    def fixed_rotations(self) -> List[Rotation]:
        cfg = self.config
        return [
            # places an unflipped module within a rod
            Rotation(cfg.tag('unflipped_rotation'), 90.0, 90.0, 0.0, 0.0, 90.0, 0.0),
            # places a flipped module within a rod
            Rotation(cfg.tag('flipped_rotation'), 90.0, 270.0, 0.0, 0.0, 90.0, 180.0),
            # 180 deg about Y
            Rotation(cfg.tag('flip_rotation'), 90.0, 180.0, 90.0, 90.0, 180.0, 0.0),
        ]

    # ------------------------------------------------------------------
    # helpers

    def _log(self, message):
        if self.verbose:
            print(message)

    def _q(self, name):
        return f"{self.namespace}:{name}"

    def _tag(self, key):
        return self.config.tag(key)

    def _layer_name(self, layer):
        return f"{self._tag('layer')}{layer}"

    def _disc_name(self, disc):
        return f"{self._tag('disc')}{disc}"

    def _barrel_module_name(self, ring, layer):
        return f"{self._tag('barrel_module')}{ring}{self._layer_name(layer)}"

    def _endcap_module_name(self, ring, disc):
        return f"{self._tag('endcap_module')}{ring}{self._disc_name(disc)}"

    def _selector(self, key):
        return TopologySelector(self._tag(key) + self._tag('par_tail'), (self._tag('structure'), self._tag(key)))

    def _active_surface_name(self, module_name, module_type, position):
        tag = self._tag
        if module_type == "ptPS":
            sensor = tag('strip') if position == tag('upper') else tag('pixel')
            return module_name + position + tag('ps') + sensor + tag('active')
        if module_type == "pt2S":
            return module_name + position + tag('2s') + tag('active')
        raise UnknownModuleTypeError(module_type)

    def _effective_capsule(self, capsule: ModuleCapsule) -> ModuleCapsule:
        """Fill in the sensor thickness from the sensor mass when a module does not declare one"""
        module = capsule.module
        if module.sensor_thickness > 0:
            return capsule
        thickness = calculate_sensor_thickness(capsule, self.material_table, self._tag('sensor_silicon'))
        if thickness <= 0:
            return capsule
        return replace(capsule, module=replace(module, sensor_thickness=thickness))

    def _decompose(self, capsule: ModuleCapsule, module_name) -> ModuleDecomposition:
        return decompose(capsule, module_name, module_name)

    @staticmethod
    def _is_boundary(module: Module):
        ref = module.uni_ref
        return ref.side > 0 and ref.phi in (1, 2)

    # ------------------------------------------------------------------
    # pass 1: top-level containers

    def analyse_containers(self) -> RecordCollector:
        out = RecordCollector()
        topology = aggregate_layers(self.tracker)

        up, down = self._barrel_container(topology.barrel_layers)
        if up and down:
            out.add_shape(Shape(self._tag('barrel_container'), ShapeType.POLYCONE,
                                rz_up=tuple(up), rz_down=tuple(down)))
        self._log("Barrel container done.")

        up, down = self._endcap_container(topology.endcap_discs)
        if up and down:
            out.add_shape(Shape(self._tag('endcap_container'), ShapeType.POLYCONE,
                                rz_up=tuple(up), rz_down=tuple(down)))
        self._log("Endcap container done.")
        return out

    def _barrel_container(self, layers):
        """
        (r, z) points of the barrel polycone. ``up`` runs along z- and
        ``down`` along z+, both by increasing radius.
        """
        extrema = []
        for entry in layers:
            env = Envelope()
            for capsule in entry.capsules:
                if self._is_boundary(capsule.module):
                    name = self._barrel_module_name(capsule.module.uni_ref.ring, entry.index)
                    env.merge(self._decompose(self._effective_capsule(capsule), name).envelope)
            if not env.is_empty:
                extrema.append(env)

        up, down = [], []
        rmax = zmax = zmin = 0.0
        for position, env in enumerate(extrema, start=1):
            lrmin, lrmax = env.rmin, env.rmax
            lzmax = max(env.zmax, 0.0)
            lzmin = -lzmax
            if position == 1:
                up.append((lrmin, lzmin))
                down.append((lrmin, lzmax))
            elif lzmax != zmax:
                # new layer sticks out compared to the previous one, or the other way round
                r = lrmin if lzmax > zmax else rmax
                up.append((r, zmin))
                down.append((r, zmax))
                up.append((r, lzmin))
                down.append((r, lzmax))
            if position == len(extrema):
                up.append((lrmax, lzmin))
                down.append((lrmax, lzmax))
            rmax = lrmax
            if lzmin < 0:
                zmin = lzmin
            if lzmax > 0:
                zmax = lzmax
        return up, down

    def _endcap_container(self, discs):
        """
        (r, z) points of the z+ endcap polycone. ``up`` holds the outer radius
        and ``down`` the inner radius, both by increasing z.
        """
        offset = self.config.z_pixfwd
        extrema = []
        for entry in discs:
            seen = set()
            env = Envelope()
            for capsule in entry.capsules:
                ring = capsule.module.uni_ref.ring
                if ring in seen:
                    continue
                seen.add(ring)
                name = self._endcap_module_name(ring, entry.index)
                env.merge(self._decompose(self._effective_capsule(capsule), name).envelope)
            # the z- endcap is the mirror image of the z+ one
            if not env.is_empty and env.zmax > 0:
                extrema.append(env)

        up, down = [], []
        rmin = rmax = zmax = 0.0
        for position, env in enumerate(extrema, start=1):
            lrmin, lrmax, lzmin, lzmax = env.rmin, env.rmax, env.zmin, env.zmax
            if position == 1:
                rmin, rmax = lrmin, lrmax
                up.append((rmax, lzmin - offset))
                down.append((rmin, lzmin - offset))
            else:
                if rmax > lrmax:
                    # larger -> smaller: step at the end of the previous disc
                    z = zmax - offset
                    up.append((rmax, z))
                    down.append((rmin, z))
                    rmin, rmax = lrmin, lrmax
                    up.append((rmax, z))
                    down.append((rmin, z))
                if rmax < lrmax:
                    # smaller -> larger: step at the start of the new disc
                    z = lzmin - offset
                    up.append((rmax, z))
                    down.append((rmin, z))
                    rmin, rmax = lrmin, lrmax
                    up.append((rmax, z))
                    down.append((rmin, z))
            zmax = lzmax
            if position == len(extrema):
                up.append((rmax, zmax - offset))
                down.append((rmin, zmax - offset))
        return up, down

    # ------------------------------------------------------------------
    # elementary materials

    def analyse_elements(self) -> RecordCollector:
        out = RecordCollector()
        for row in self.material_table:
            weight = atomic_weight(row.interaction_length)
            number = atomic_number(row.radiation_length, weight)
            if number < 0:
                print(f"Warning: material {row.tag} has no physical atomic number "
                      f"(X0={row.radiation_length}, A={weight:.6g}); Z set to -1")
            out.add_element(ElementaryMaterial(row.tag, row.density, weight, number))
        self._log("Elementary materials done.")
        return out

    # ------------------------------------------------------------------
    # shared module records

    def _add_module_internals(self, out: RecordCollector, capsule: ModuleCapsule, dec: ModuleDecomposition,
                              module_name, wafer_shape: Shape, module_spec: TopologySelector):
        """Wafers, active surfaces and hybrid sub-volumes of one module"""
        module = capsule.module
        tag = self._tag
        if module.num_sensors == 2:
            positions = (tag('lower'), tag('upper'))
        else:
            positions = ("",)

        for position in positions:
            wafer = module_name + position + tag('wafer')
            out.add_shape(replace(wafer_shape, name=wafer))
            out.add_logical_volume(LogicalVolume(wafer, self._q(wafer), tag('air')))
            dz = module.ds_distance / 2.0 if position == tag('upper') else -module.ds_distance / 2.0
            rotation = None
            if position == tag('upper') and module.stereo_rotation != 0:
                stereo = math.degrees(module.stereo_rotation)
                rot = Rotation(tag('stereo') + module_name, 90.0, stereo, 90.0, 90.0 + stereo, 0.0, 0.0)
                out.add_rotation(rot)
                rotation = self._q(rot.name)
            out.add_placement(Placement(self._q(module_name), self._q(wafer), (0.0, 0.0, dz), rotation))

        sensors = (module.inner_sensor, module.outer_sensor)
        for position, sensor in zip(positions, sensors):
            try:
                active = self._active_surface_name(module_name, module.module_type, position)
            except UnknownModuleTypeError as e:
                print(f"Error: {e} (module {module_name}), active surface skipped")
                continue
            out.add_shape(replace(wafer_shape, name=active))
            out.add_logical_volume(LogicalVolume(active, self._q(active), self._q(tag('sensor_silicon'))))
            out.add_placement(Placement(self._q(module_name + position + tag('wafer')), self._q(active)))
            module_spec.add(active, ModuleROCInfo(module.module_type, sensor.roc_rows, sensor.roc_cols,
                                                  sensor.roc_x, sensor.roc_y))

        self._add_sub_volume_records(out, dec)

    def _add_sub_volume_records(self, out: RecordCollector, dec: ModuleDecomposition):
        prefix = self._tag('hybrid_composite')
        for vol in dec.sub_volumes:
            if not vol.density > 0:
                continue
            material = prefix + vol.name
            out.add_shape(Shape(vol.name, ShapeType.BOX, dx=vol.dx, dy=vol.dy, dz=vol.dz))
            out.add_logical_volume(LogicalVolume(vol.name, self._q(vol.name), self._q(material)))
            out.add_placement(Placement(self._q(vol.parent), self._q(vol.name), (vol.x, vol.y, vol.z)))
            out.add_composite(CompositeMaterial(material, vol.density, tuple(normalized_fractions(vol.materials))))

    # ------------------------------------------------------------------
    # pass 2: barrel layers

    def analyse_layers(self) -> RecordCollector:
        out = RecordCollector()
        topology = aggregate_layers(self.tracker)
        specs = {
            'layer': self._selector('barrel_layer'),
            'rod': self._selector('barrel_rod'),
            'stack': self._selector('barrel_stack'),
            'module': self._selector('barrel_det'),
        }
        for entry in topology.barrel_layers:
            self._analyse_layer(entry, out, specs)
        for spec in specs.values():
            out.add_selector(spec)
        self._log("Barrel layers done.")
        return out

    def _place_in_rod(self, out, capsules, index, rod_name, module_name, radius_in):
        """Place a straight-rod module, and its partner on the other z side when there is one"""
        tag = self._tag
        module = capsules[index].module
        copies = [module]
        partner = find_partner_module(capsules, index, module.uni_ref.ring)
        if partner is not None:
            copies.append(capsules[partner].module)
        for copy, placed in enumerate(copies, start=1):
            rotation = tag('flipped_rotation') if placed.flipped else tag('unflipped_rotation')
            out.add_placement(Placement(self._q(rod_name), self._q(module_name),
                                        (placed.rho - radius_in, 0.0, placed.z), self._q(rotation), copy))
        return len(copies)

    def _analyse_layer(self, entry: LayerEntry, out: RecordCollector, specs):
        cfg = self.config
        tag = self._tag
        eps = cfg.epsilon
        layer = entry.index
        lname = self._layer_name(layer)
        rodname = f"{tag('rod')}{layer}"

        capsules = [self._effective_capsule(c) for c in entry.capsules]
        boundary = [i for i, c in enumerate(capsules) if self._is_boundary(c.module)]
        if not boundary:
            print(f"Warning: {lname} has no module on the positive side of rods 1 and 2, skipped")
            return

        decs = {}
        xy_env, zr_env = Envelope(), Envelope()
        flat_xy_env, flat_zr_env = Envelope(), Envelope()
        radius_in = radius_out = 0.0
        for i in boundary:
            module = capsules[i].module
            ref = module.uni_ref
            dec = self._decompose(capsules[i], self._barrel_module_name(ref.ring, layer))
            decs[i] = dec
            flat = entry.is_tilted and module.tilt_angle == 0
            if ref.phi == 1:
                xy_env.merge(dec.envelope)
                if flat:
                    flat_xy_env.merge(dec.envelope)
            # z and r also need rod 2, which differs from rod 1 in tilted layers
            zr_env.merge(dec.envelope)
            if flat:
                flat_zr_env.merge(dec.envelope)
            # both rings 1 and 2 because of the small radial delta between them
            if ref.ring in (1, 2):
                if ref.phi == 1:
                    radius_in += module.rho / 2.0
                else:
                    radius_out += module.rho / 2.0

        rtotal = itotal = 0.0
        count = 0
        rings_plus: Dict[int, TiltedRingInfo] = {}
        rings_minus: Dict[int, TiltedRingInfo] = {}

        for i in boundary:
            capsule = capsules[i]
            module = capsule.module
            ref = module.uni_ref
            dec = decs[i]
            mname = self._barrel_module_name(ref.ring, layer)
            tilt = math.degrees(module.tilt_angle) if entry.is_tilted else 0.0

            if ref.phi == 1:
                out.add_shape(Shape(mname, ShapeType.BOX, dx=dec.expanded_width / 2.0,
                                    dy=dec.expanded_length / 2.0, dz=dec.expanded_thickness / 2.0))
                out.add_logical_volume(LogicalVolume(mname, self._q(mname), tag('air')))
                if tilt == 0:
                    self._place_in_rod(out, capsules, i, rodname, mname, radius_in)
                specs['stack'].add(mname)

                wafer = Shape("", ShapeType.BOX, dx=module.width / 2.0, dy=module.length / 2.0,
                              dz=module.sensor_thickness / 2.0)
                self._add_module_internals(out, capsule, dec, mname, wafer, specs['module'])

                if tilt != 0:
                    ringname = f"{tag('ring')}{ref.ring}{lname}"
                    env = dec.envelope
                    plus = TiltedRingInfo(
                        name=ringname + tag('plus'), child_name=mname, is_z_plus=1, tilt_angle=tilt,
                        bw_flipped=module.flipped, fw_flipped=module.flipped, phi=ref.phi,
                        modules=entry.num_rods, r1=module.rho, z1=module.z, r2=module.rho, z2=module.z,
                        rmin=env.rmin, rmax=env.rmax, zmin=env.zmin, zmax=env.zmax,
                        rmin_at_zmin=env.rmin_at_zmin, rmax_at_zmax=env.rmax_at_zmax)
                    rings_plus[ref.ring] = plus
                    rings_minus[ref.ring] = replace(plus, name=ringname + tag('minus'), is_z_plus=0,
                                                    z1=-module.z, z2=-module.z)

                rtotal += capsule.radiation_length
                itotal += capsule.interaction_length
                count += 1

            if entry.is_tilted and ref.phi == 2:
                env = dec.envelope
                for rings, sign in ((rings_plus, 1.0), (rings_minus, -1.0)):
                    info = rings.get(ref.ring)
                    if info is None:
                        continue
                    info.fw_flipped = module.flipped
                    info.r2 = module.rho
                    info.z2 = sign * module.z
                    info.rmax = env.rmax
                    info.zmax = env.zmax
                    info.rmax_at_zmax = env.rmax_at_zmax

        if count > 0:
            out.add_radiation_length(RadiationLengthSummary(True, layer, rtotal / count, itotal / count))

        # rod
        rod_xy = flat_xy_env if entry.is_tilted and not flat_xy_env.is_empty else xy_env
        rod_zr = flat_zr_env if entry.is_tilted and not flat_zr_env.is_empty else zr_env
        out.add_shape(Shape(rodname, ShapeType.BOX,
                            dx=(rod_xy.ymax - rod_xy.ymin) / 2.0 + eps,
                            dy=(rod_xy.xmax - rod_xy.xmin) / 2.0 + eps,
                            dz=rod_zr.zmax + eps))
        out.add_logical_volume(LogicalVolume(rodname, self._q(rodname), tag('air')))
        specs['rod'].add(rodname)

        # rods in layer
        out.add_algorithm(ReplicationAlgorithmCall(tag('phialt_algo'), self._q(lname), (
            AlgoParameter.string("ChildName", self._q(rodname)),
            AlgoParameter.numeric("Tilt", entry.layer.tilt + 90.0, "deg"),
            AlgoParameter.numeric("StartAngle", entry.layer.start_angle, "deg"),
            AlgoParameter.numeric("RangeAngle", 360.0, "deg"),
            AlgoParameter.numeric("RadiusIn", radius_in, "mm"),
            AlgoParameter.numeric("RadiusOut", radius_out, "mm"),
            AlgoParameter.numeric("ZPosition", 0.0, "mm"),
            AlgoParameter.numeric("Number", entry.num_rods),
            AlgoParameter.numeric("StartCopyNo", 1),
            AlgoParameter.numeric("IncrCopyNo", 1),
        )))

        # tilted rings
        for rings in (rings_plus, rings_minus):
            for ring in sorted(rings):
                info = rings[ring]
                if info.modules > 0:
                    self._add_tilted_ring(out, info, lname, specs['rod'])

        # layer
        out.add_shape(Shape(lname, ShapeType.TUBE, rmin=zr_env.rmin - 2 * eps, rmax=zr_env.rmax + 2 * eps,
                            dz=zr_env.zmax + 2 * eps))
        out.add_logical_volume(LogicalVolume(lname, self._q(lname), tag('air')))
        out.add_placement(Placement(cfg.qualified('barrel_namespace', 'barrel_parent'), self._q(lname)))
        specs['layer'].add(lname)

    def _add_tilted_ring(self, out: RecordCollector, info: TiltedRingInfo, lname, rod_spec: TopologySelector):
        eps = self.config.epsilon
        tag = self._tag
        t = math.tan(math.radians(info.tilt_angle))
        dz = (info.zmax - info.zmin) / 2.0 + eps

        # section of cone following the tilt
        near_min = info.rmin_at_zmin - eps * t
        far_min = info.rmin_at_zmin - 2 * dz * t - eps * t
        near_max = info.rmax_at_zmax + eps * t
        far_max = info.rmax_at_zmax + 2 * dz * t + eps * t
        if info.is_z_plus:
            radii = dict(rmin1=near_min, rmax1=far_max, rmin2=far_min, rmax2=near_max)
        else:
            radii = dict(rmin1=far_min, rmax1=near_max, rmin2=near_min, rmax2=far_max)
        cone = info.name + tag('cone')
        out.add_shape(Shape(cone, ShapeType.CONE, dz=dz, **radii))

        # section of tube bounding the true radius range
        tub = info.name + tag('tub')
        out.add_shape(Shape(tub, ShapeType.TUBE, dz=dz, rmin=info.rmin - eps, rmax=info.rmax + eps))

        # the layer envelope relies on this intersection staying within ~rmin, ~rmax
        out.add_shape(Shape(info.name, ShapeType.INTERSECTION, solid1=cone, solid2=tub))
        out.add_logical_volume(LogicalVolume(info.name, self._q(info.name), tag('air')))
        out.add_placement(Placement(self._q(lname), self._q(info.name), (0.0, 0.0, (info.z1 + info.z2) / 2.0)))
        rod_spec.add(info.name)

        step = 360.0 / info.modules
        halves = (
            # backward part of the ring
            (1, 90.0 + step * (info.phi - 1), info.r1, (info.z1 - info.z2) / 2.0, info.bw_flipped),
            # forward part of the ring
            (2, 90.0 + step * info.phi, info.r2, (info.z2 - info.z1) / 2.0, info.fw_flipped),
        )
        for start_copy, start_angle, radius, center_z, flipped in halves:
            out.add_algorithm(ReplicationAlgorithmCall(tag('ring_algo'), self._q(info.name), (
                AlgoParameter.string("ChildName", self._q(info.child_name)),
                AlgoParameter.numeric("N", info.modules // 2),
                AlgoParameter.numeric("StartCopyNo", start_copy),
                AlgoParameter.numeric("IncrCopyNo", 2),
                AlgoParameter.numeric("RangeAngle", 360.0, "deg"),
                AlgoParameter.numeric("StartAngle", start_angle, "deg"),
                AlgoParameter.numeric("Radius", radius, "mm"),
                AlgoParameter.vector("Center", 0.0, 0.0, center_z),
                AlgoParameter.numeric("IsZPlus", info.is_z_plus),
                AlgoParameter.numeric("TiltAngle", info.tilt_angle, "deg"),
                AlgoParameter.numeric("IsFlipped", int(flipped)),
            )))

    # ------------------------------------------------------------------
    # pass 3: endcap discs

    def analyse_discs(self) -> RecordCollector:
        out = RecordCollector()
        topology = aggregate_layers(self.tracker)
        specs = {
            'disc': self._selector('endcap_wheel'),
            'ring': self._selector('endcap_ring'),
            'stack': self._selector('endcap_stack'),
            'module': self._selector('endcap_det'),
        }
        for entry in topology.endcap_discs:
            if entry.min_z > 0:
                self._analyse_disc(entry, out, specs)
        for spec in specs.values():
            out.add_selector(spec)
        self._log("Endcap discs done.")
        return out

    def _analyse_disc(self, entry: DiscEntry, out: RecordCollector, specs):
        cfg = self.config
        tag = self._tag
        eps = cfg.epsilon
        disc = entry.index
        dname = self._disc_name(disc)

        capsules = [self._effective_capsule(c) for c in entry.capsules]
        boundary = [i for i, c in enumerate(capsules) if self._is_boundary(c.module)]
        if not boundary:
            print(f"Warning: {dname} has no module on the positive side, skipped")
            return

        decs = {}
        disc_env = Envelope()
        ring_envs: Dict[int, Envelope] = {}
        for i in boundary:
            ring = capsules[i].module.uni_ref.ring
            dec = self._decompose(capsules[i], self._endcap_module_name(ring, disc))
            decs[i] = dec
            disc_env.merge(dec.envelope)
            ring_envs.setdefault(ring, Envelope()).merge(dec.envelope)
        # true z extent of the modules, not their nominal thickness
        zmin, zmax = disc_env.zmin, disc_env.zmax
        thickness = zmax - zmin

        rtotal = itotal = 0.0
        count = 0
        rings: Dict[int, EndcapRingInfo] = {}

        for i in boundary:
            capsule = capsules[i]
            module = capsule.module
            ref = module.uni_ref
            dec = decs[i]

            if ref.phi == 1:
                rname = f"{tag('ring')}{ref.ring}{dname}"
                mname = self._endcap_module_name(ref.ring, disc)

                if module.is_rectangular:
                    out.add_shape(Shape(mname, ShapeType.BOX, dx=dec.expanded_width / 2.0,
                                        dy=dec.expanded_length / 2.0, dz=dec.expanded_thickness / 2.0))
                    wafer = Shape("", ShapeType.BOX, dx=module.min_width / 2.0, dy=module.length / 2.0,
                                  dz=module.sensor_thickness / 2.0)
                else:
                    out.add_shape(Shape(
                        mname, ShapeType.TRAPEZOID,
                        dx=module.min_width / 2.0 + module.service_hybrid_width,
                        dxx=module.max_width / 2.0 + module.service_hybrid_width,
                        dy=module.length / 2.0 + module.front_end_hybrid_width,
                        dyy=module.length / 2.0 + module.front_end_hybrid_width,
                        dz=module.thickness / 2.0 + module.support_plate_thickness))
                    wafer = Shape("", ShapeType.TRAPEZOID, dx=module.min_width / 2.0, dxx=module.max_width / 2.0,
                                  dy=module.length / 2.0, dyy=module.length / 2.0,
                                  dz=module.sensor_thickness / 2.0)
                out.add_logical_volume(LogicalVolume(mname, self._q(mname), tag('air')))
                specs['stack'].add(mname)

                self._add_module_internals(out, capsule, dec, mname, wafer, specs['module'])

                ring_env = ring_envs[ref.ring]
                rings[ref.ring] = EndcapRingInfo(
                    name=rname, child_name=mname, is_z_plus=1 if ref.side > 0 else 0,
                    fw_flipped=module.flipped, phase=math.degrees(module.phi),
                    modules=entry.disc.ring(ref.ring).num_modules,
                    module_thickness=dec.expanded_thickness,
                    rmin=dec.envelope.rmin, rmid=module.rho, rmax=dec.envelope.rmax,
                    zmin=ring_env.zmin, zmax=ring_env.zmax, zfw=module.z, zbw=module.z)

                rtotal += capsule.radiation_length
                itotal += capsule.interaction_length
                count += 1

            if ref.phi == 2 and ref.ring in rings:
                rings[ref.ring].zbw = module.z

        if count > 0:
            out.add_radiation_length(RadiationLengthSummary(False, disc, rtotal / count, itotal / count))

        for ring in sorted(rings):
            info = rings[ring]
            if info.modules > 0:
                self._add_endcap_ring(out, info, dname, (zmin + zmax) / 2.0, specs['ring'])

        # disc
        out.add_shape(Shape(dname, ShapeType.TUBE, rmin=disc_env.rmin - 2 * eps, rmax=disc_env.rmax + 2 * eps,
                            dz=thickness / 2.0 + 2 * eps))
        out.add_logical_volume(LogicalVolume(dname, self._q(dname), tag('air')))
        out.add_placement(Placement(cfg.qualified('endcap_namespace', 'endcap_parent'), self._q(dname),
                                    (0.0, 0.0, (zmax + zmin) / 2.0 - cfg.z_pixfwd)))
        specs['disc'].add(dname)

    def _add_endcap_ring(self, out: RecordCollector, info: EndcapRingInfo, dname, disc_center,
                         ring_spec: TopologySelector):
        eps = self.config.epsilon
        tag = self._tag
        ring_center = (info.zmin + info.zmax) / 2.0

        out.add_shape(Shape(info.name, ShapeType.TUBE, rmin=info.rmin - eps, rmax=info.rmax + eps,
                            dz=(info.zmax - info.zmin) / 2.0 + eps))
        out.add_logical_volume(LogicalVolume(info.name, self._q(info.name), tag('air')))
        out.add_placement(Placement(self._q(dname), self._q(info.name), (0.0, 0.0, ring_center - disc_center)))
        ring_spec.add(info.name)

        step = 360.0 / info.modules
        halves = (
            # forward part of the ring
            (1, info.phase, info.zfw, info.fw_flipped),
            # backward part of the ring
            (2, info.phase + step, info.zbw, not info.fw_flipped),
        )
        for start_copy, start_angle, z, flipped in halves:
            out.add_algorithm(ReplicationAlgorithmCall(tag('ring_algo'), self._q(info.name), (
                AlgoParameter.string("ChildName", self._q(info.child_name)),
                AlgoParameter.numeric("N", info.modules // 2),
                AlgoParameter.numeric("StartCopyNo", start_copy),
                AlgoParameter.numeric("IncrCopyNo", 2),
                AlgoParameter.numeric("RangeAngle", 360.0, "deg"),
                AlgoParameter.numeric("StartAngle", start_angle, "deg"),
                AlgoParameter.numeric("Radius", info.rmid, "mm"),
                AlgoParameter.vector("Center", 0.0, 0.0, z - ring_center),
                AlgoParameter.numeric("IsZPlus", info.is_z_plus),
                AlgoParameter.numeric("TiltAngle", 90.0, "deg"),
                AlgoParameter.numeric("IsFlipped", int(flipped)),
            )))

    # ------------------------------------------------------------------
    # pass 4: services and supports

    def analyse_inactive(self) -> RecordCollector:
        out = RecordCollector()
        self._barrel_services(out)
        self._log("Barrel services done.")
        self._endcap_services(out)
        self._log("Endcap services done.")
        self._supports(out)
        self._log("Support structures done.")
        return out

    def _add_inactive(self, out: RecordCollector, element: InactiveElement, material, shape_name, parent,
                      dz=None):
        """Composite, tube and the z+/z- placement pair of one inactive element"""
        if not element.local_masses:
            print(f"Warning: {shape_name} is not exported because it is empty.")
            return False
        fractions = normalized_fractions(dict(sorted(element.local_masses.items())))
        out.add_composite(CompositeMaterial(material, inactive_density(element), tuple(fractions)))
        half = element.z_length / 2.0
        out.add_shape(Shape(shape_name, ShapeType.TUBE, dz=half, rmin=element.inner_radius,
                            rmax=element.outer_radius))
        out.add_logical_volume(LogicalVolume(shape_name, self._q(shape_name), self._q(material)))
        z = element.z_offset + half if dz is None else dz
        out.add_placement(Placement(parent, self._q(shape_name), (0.0, 0.0, z)))
        out.add_placement(Placement(parent, self._q(shape_name), (0.0, 0.0, -z),
                                    self._q(self._tag('flip_rotation')), copy=2))
        return True

    def _service_names(self, element: InactiveElement):
        tag = self._tag
        r = int(element.inner_radius)
        z = int(abs(element.z_offset + element.z_length / 2.0))
        material = f"{tag('service_composite')}{element.category.value}R{r}Z{z}"
        shape = f"{tag('service')}R{r}Z{z}"
        return material, shape

    def _barrel_services(self, out: RecordCollector):
        parent = self.config.qualified('barrel_namespace', 'barrel_parent')
        seen_inner = set()
        for element in self.inactive.barrel_services:
            # a service crossing z=0 is only exported once per inner radius
            if int(element.z_offset) == 0:
                if int(element.inner_radius) in seen_inner:
                    continue
                seen_inner.add(int(element.inner_radius))
            if element.z_offset + element.z_length <= 0:
                continue
            material, shape = self._service_names(element)
            self._add_inactive(out, element, material, shape, parent)

    def _endcap_services(self, out: RecordCollector):
        parent = self.config.qualified('endcap_namespace', 'endcap_parent')
        for element in self.inactive.endcap_services:
            # the z- copies come from the mirrored placement
            if element.z_offset + element.z_length <= 0:
                continue
            material, shape = self._service_names(element)
            self._add_inactive(out, element, material, shape, parent)

    def _supports(self, out: RecordCollector):
        cfg = self.config
        tag = self._tag
        for element in self.inactive.supports:
            category = element.category
            r = int(element.inner_radius)
            z = int(element.z_length / 2.0 + element.z_offset)
            material = f"{tag('support_composite')}{category.value}R{r}Z{z}"
            shape = f"{tag('support')}{category.value}R{r}Z{z}"
            if category in BARREL_SUPPORTS:
                parent = cfg.qualified('barrel_namespace', 'barrel_parent')
            elif category is MaterialCategory.ENDCAP_SUPPORT:
                parent = cfg.qualified('endcap_namespace', 'endcap_parent')
            else:
                parent = self._q(tag('tracker'))
            dz = 0.0 if category in CENTERED_SUPPORTS else None
            self._add_inactive(out, element, material, shape, parent, dz=dz)


def extract(tracker, material_table, inactive=None, config=None, write_tracker=False, verbose=True):
    """Run the full analysis and return the merged records"""
    return Extractor(tracker, material_table, inactive, config, write_tracker, verbose).analyse()
