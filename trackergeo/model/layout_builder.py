"""
Build tracker models from a compact layout description.

Barrel layers are rings of rods around the beam axis; each rod carries the
same number of modules on both sides of z=0. Tilted layers add rings of
modules rotated towards the interaction point after the flat rings. Endcap
discs are sets of rings of radially oriented modules, alternating in z.
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .materials import (
    InactiveElement,
    InactiveSurfaces,
    MaterialEntry,
    MaterialTable,
    category_from_string,
    radiation_budget,
)
from .tracker import (
    BarrelLayer,
    BarrelRod,
    EndcapDisc,
    EndcapRing,
    Module,
    ModuleCapsule,
    SensorROC,
    Tracker,
    UniRef,
    rectangle_polygon,
)


@dataclass(frozen=True)
class ModuleType:
    """Dimensions (mm) and material content shared by all modules of one kind"""
    name: str
    length: float
    width: float
    sensor_thickness: float
    max_width: Optional[float] = None
    module_type: str = "pt2S"
    num_sensors: int = 2
    ds_distance: float = 0.0
    front_end_hybrid_width: float = 0.0
    service_hybrid_width: float = 0.0
    hybrid_thickness: float = 0.0
    support_plate_thickness: float = 0.0
    stereo_rotation: float = 0.0    # rad
    materials: Tuple[MaterialEntry, ...] = ()
    inner_sensor: SensorROC = field(default_factory=SensorROC)
    outer_sensor: SensorROC = field(default_factory=SensorROC)

    @property
    def thickness(self):
        if self.num_sensors == 2:
            return self.ds_distance + self.sensor_thickness
        return self.sensor_thickness


@dataclass(frozen=True)
class TiltedRingLayout:
    """One tilted ring on the z+ side; the z- ring is its mirror image"""
    z: float
    radius: float
    tilt: float     # deg


def make_module(mtype: ModuleType, center, normal, width_axis, length_axis, uni_ref: UniRef,
                tilt_angle=0.0, flipped=False) -> Module:
    center = np.asarray(center, dtype=float)
    normal = np.asarray(normal, dtype=float)
    normal = normal / np.linalg.norm(normal)
    poly = rectangle_polygon(center, width_axis, length_axis, mtype.width, mtype.length, mtype.max_width)
    max_width = mtype.max_width if mtype.max_width is not None else mtype.width
    return Module(
        center=center,
        normal=normal,
        base_poly=poly,
        length=mtype.length,
        min_width=mtype.width,
        max_width=max_width,
        thickness=mtype.thickness,
        sensor_thickness=mtype.sensor_thickness,
        uni_ref=uni_ref,
        module_type=mtype.module_type,
        num_sensors=mtype.num_sensors,
        ds_distance=mtype.ds_distance,
        front_end_hybrid_width=mtype.front_end_hybrid_width,
        service_hybrid_width=mtype.service_hybrid_width,
        hybrid_thickness=mtype.hybrid_thickness,
        support_plate_thickness=mtype.support_plate_thickness,
        stereo_rotation=mtype.stereo_rotation,
        tilt_angle=tilt_angle,
        flipped=flipped,
        inner_sensor=mtype.inner_sensor,
        outer_sensor=mtype.outer_sensor,
    )


def make_capsule(module: Module, materials: Sequence[MaterialEntry],
                 table: Optional[MaterialTable] = None) -> ModuleCapsule:
    """
    Pair a module with its materials. Radiation and interaction lengths are
    computed from the material table when every element is known there.
    """
    capsule = ModuleCapsule(module, tuple(materials))
    masses = capsule.local_masses
    if table is None or not all(tag in table for tag in masses):
        return capsule
    return ModuleCapsule(
        module, tuple(materials),
        radiation_length=radiation_budget(masses, capsule.surface, table),
        interaction_length=radiation_budget(masses, capsule.surface, table, interaction=True),
    )


def _barrel_module(mtype, rho, phi, z, ref, table, tilt=0.0, flipped=False):
    """Module facing the beam axis at (rho, phi, z), rotated by ``tilt`` (deg) towards z=0"""
    radial = np.array([math.cos(phi), math.sin(phi), 0.0])
    tangent = np.array([-math.sin(phi), math.cos(phi), 0.0])
    axis = np.array([0.0, 0.0, 1.0])
    t = math.radians(tilt)
    sign = 1.0 if z >= 0 else -1.0
    normal = math.cos(t) * radial + sign * math.sin(t) * axis
    length_axis = -sign * math.sin(t) * radial + math.cos(t) * axis
    center = (rho * radial[0], rho * radial[1], z)
    module = make_module(mtype, center, normal, tangent, length_axis, ref, tilt_angle=t, flipped=flipped)
    return make_capsule(module, mtype.materials, table)


def build_barrel_layer(radius, num_rods, num_rings, mtype: ModuleType, table=None, start_angle=0.0,
                       ring_pitch=None, rod_stagger=0.0, tilted_rings: Sequence[TiltedRingLayout] = (),
                       tilted_type: Optional[ModuleType] = None, flipped=False, tilt=0.0) -> BarrelLayer:
    """
    Parameters:
    -----------
    radius : float
        Average radius of the flat modules (mm)
    num_rods : int
        Number of rods around phi
    num_rings : int
        Number of flat modules per rod on each side of z=0
    mtype : ModuleType
        Flat module type
    table : MaterialTable, optional
        Used to compute capsule radiation / interaction lengths
    start_angle : float
        Azimuth of the first rod (deg)
    ring_pitch : float, optional
        z distance between flat module centers; defaults to the module length
    rod_stagger : float
        Radial distance between odd and even rods (mm)
    tilted_rings : sequence of TiltedRingLayout
        Tilted rings appended after the flat rings, on both sides
    tilted_type : ModuleType, optional
        Tilted module type, defaults to ``mtype``
    flipped : bool
        Mark the flat modules as flipped
    tilt : float
        Rod tilt around its own axis (deg)

    Returns:
    --------
    BarrelLayer : rods ordered by phi; inside a rod the z+ side ring by ring,
    then the z- side
    """
    pitch = ring_pitch if ring_pitch is not None else mtype.length
    tilted_type = tilted_type if tilted_type is not None else mtype
    delta_phi = 2 * math.pi / num_rods
    rods = []
    for rod_idx in range(num_rods):
        phi_ref = rod_idx + 1
        phi = math.radians(start_angle) + rod_idx * delta_phi
        offset = -rod_stagger / 2 if rod_idx % 2 == 0 else rod_stagger / 2
        rod = BarrelRod()
        for side in (1, -1):
            for ring in range(1, num_rings + 1):
                z = side * (ring - 0.5) * pitch
                rod.capsules.append(_barrel_module(mtype, radius + offset, phi, z, UniRef(side, phi_ref, ring),
                                                   table, flipped=flipped))
            for i, tilted in enumerate(tilted_rings):
                ring = num_rings + i + 1
                rod.capsules.append(_barrel_module(tilted_type, tilted.radius + offset, phi, side * tilted.z,
                                                   UniRef(side, phi_ref, ring), table, tilt=tilted.tilt))
        rods.append(rod)
    return BarrelLayer(rods=rods, tilt=tilt, start_angle=start_angle)


def build_endcap_disc(z, rings: Sequence[Tuple[float, int, ModuleType]], table=None, module_stagger=4.0,
                      ring_stagger=8.0, flipped=False) -> EndcapDisc:
    """
    Parameters:
    -----------
    z : float
        Nominal disc position (mm); negative for the z- endcap
    rings : sequence of (radius, num_modules, ModuleType)
        Ring layout from the innermost ring outwards; radius is the module center
    module_stagger : float
        z distance between consecutive modules of a ring (mm)
    ring_stagger : float
        z distance between consecutive rings (mm)
    flipped : bool
        Mark odd modules as flipped; even ones get the opposite orientation
    """
    side = 1 if z >= 0 else -1
    axis = np.array([0.0, 0.0, float(side)])
    disc = EndcapDisc()
    for ring_idx, (radius, num_modules, mtype) in enumerate(rings, start=1):
        ring = EndcapRing(ring_idx)
        ring_z = z + side * (ring_stagger / 2 if ring_idx % 2 == 0 else -ring_stagger / 2)
        delta_phi = 2 * math.pi / num_modules
        for module_idx in range(num_modules):
            phi = module_idx * delta_phi
            radial = np.array([math.cos(phi), math.sin(phi), 0.0])
            tangent = np.array([-math.sin(phi), math.cos(phi), 0.0])
            # odd modules on the near face of the ring, even ones on the far face
            near = module_idx % 2 == 0
            module_z = ring_z + side * (-module_stagger / 2 if near else module_stagger / 2)
            center = (radius * radial[0], radius * radial[1], module_z)
            module = make_module(mtype, center, axis, tangent, radial, UniRef(side, module_idx + 1, ring_idx),
                                 flipped=flipped if near else not flipped)
            ring.capsules.append(make_capsule(module, mtype.materials, table))
        disc.rings.append(ring)
    return disc


# ----------------------------------------------------------------------
# JSON layouts

def _parse_material(entry):
    target = entry.get('target', 'uniform')
    return MaterialEntry(
        element=entry['element'],
        mass=float(entry['mass']),
        component=entry.get('component', ""),
        target=target,
    )


def _parse_roc(entry):
    if not entry:
        return SensorROC()
    return SensorROC(int(entry.get('rows', 0)), int(entry.get('cols', 0)),
                     int(entry.get('x', 0)), int(entry.get('y', 0)))


def parse_module_type(name, entry) -> ModuleType:
    try:
        return ModuleType(
            name=name,
            length=float(entry['length']),
            width=float(entry['width']),
            sensor_thickness=float(entry.get('sensor_thickness', 0.0)),
            max_width=float(entry['max_width']) if 'max_width' in entry else None,
            module_type=entry.get('type', "pt2S"),
            num_sensors=int(entry.get('num_sensors', 2)),
            ds_distance=float(entry.get('ds_distance', 0.0)),
            front_end_hybrid_width=float(entry.get('front_end_hybrid_width', 0.0)),
            service_hybrid_width=float(entry.get('service_hybrid_width', 0.0)),
            hybrid_thickness=float(entry.get('hybrid_thickness', 0.0)),
            support_plate_thickness=float(entry.get('support_plate_thickness', 0.0)),
            stereo_rotation=math.radians(float(entry.get('stereo_rotation', 0.0))),
            materials=tuple(_parse_material(m) for m in entry.get('materials', [])),
            inner_sensor=_parse_roc(entry.get('inner_sensor')),
            outer_sensor=_parse_roc(entry.get('outer_sensor')),
        )
    except KeyError as e:
        raise ValueError(f"Module type {name} is missing {e}") from None


def parse_inactive_element(entry) -> InactiveElement:
    return InactiveElement(
        inner_radius=float(entry['inner_radius']),
        r_width=float(entry['r_width']),
        z_offset=float(entry['z_offset']),
        z_length=float(entry['z_length']),
        category=category_from_string(entry['category']),
        local_masses={k: float(v) for k, v in entry.get('masses', {}).items()},
    )


def _module_type(types: Dict[str, ModuleType], name):
    if name not in types:
        raise ValueError(f"Unknown module type {name!r}, available: {sorted(types)}")
    return types[name]


def build_layout(layout, table: Optional[MaterialTable] = None) -> Tuple[Tracker, InactiveSurfaces]:
    """
    Build the tracker and its inactive surfaces from a layout dictionary.

    Layout keys: ``module_types`` (name -> dimensions and materials),
    ``barrel_layers``, ``endcap_discs`` and ``inactive`` with
    ``barrel_services``, ``endcap_services`` and ``supports`` lists.
    """
    types = {name: parse_module_type(name, entry) for name, entry in layout.get('module_types', {}).items()}

    tracker = Tracker()
    for entry in layout.get('barrel_layers', []):
        tilted = tuple(TiltedRingLayout(float(t['z']), float(t['radius']), float(t['tilt']))
                       for t in entry.get('tilted_rings', []))
        tilted_type = _module_type(types, entry['tilted_module']) if 'tilted_module' in entry else None
        tracker.barrel_layers.append(build_barrel_layer(
            radius=float(entry['radius']),
            num_rods=int(entry['num_rods']),
            num_rings=int(entry['num_rings']),
            mtype=_module_type(types, entry['module']),
            table=table,
            start_angle=float(entry.get('start_angle', 0.0)),
            ring_pitch=float(entry['ring_pitch']) if 'ring_pitch' in entry else None,
            rod_stagger=float(entry.get('rod_stagger', 0.0)),
            tilted_rings=tilted,
            tilted_type=tilted_type,
            flipped=bool(entry.get('flipped', False)),
            tilt=float(entry.get('tilt', 0.0)),
        ))

    for entry in layout.get('endcap_discs', []):
        rings = [(float(r['radius']), int(r['num_modules']), _module_type(types, r['module']))
                 for r in entry['rings']]
        positions = [float(entry['z'])]
        if entry.get('mirror', False):
            positions.insert(0, -float(entry['z']))
        for z in positions:
            tracker.endcap_discs.append(build_endcap_disc(
                z, rings, table,
                module_stagger=float(entry.get('module_stagger', 4.0)),
                ring_stagger=float(entry.get('ring_stagger', 8.0)),
                flipped=bool(entry.get('flipped', False)),
            ))

    inactive_entry = layout.get('inactive', {})
    inactive = InactiveSurfaces(
        barrel_services=[parse_inactive_element(e) for e in inactive_entry.get('barrel_services', [])],
        endcap_services=[parse_inactive_element(e) for e in inactive_entry.get('endcap_services', [])],
        supports=[parse_inactive_element(e) for e in inactive_entry.get('supports', [])],
    )
    return tracker, inactive


def load_layout(path, table: Optional[MaterialTable] = None) -> Tuple[Tracker, InactiveSurfaces]:
    """Read a JSON layout file, see build_layout"""
    path = Path(path)
    try:
        layout = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"{path}: invalid layout JSON ({e})") from e
    return build_layout(layout, table)
