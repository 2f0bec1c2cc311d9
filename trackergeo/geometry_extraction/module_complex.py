"""
Split a detector module into its hybrid / support sub-volumes and compute its
envelope once the hybrids are taken into account.

  Top View
  ------------------------------
  |          Left  (L)         |
  |----------------------------|     y
  |     |                |     |     ^
  | B   |     Between    |  F  |     |
  |     |                |     |     +----> x
  |----------------------------|
  |          Right (R)         |
  ------------------------------
                                            z
  Side View                                 ^
         ---------------- outer sensor      |
  ====== ================ ====== hybrids    +----> x
         ---------------- inner sensor
  ==============================
          support plate

  L and R are the front-end hybrids, F and B the service hybrids.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from trackergeo.errors import SensorMaterialError, UnknownTargetVolumeError
from trackergeo.model.materials import Distribution, SubVolumeKind
from trackergeo.model.tracker import ModuleCapsule

from .envelope_utils import MM3_TO_CM3, Envelope


# z distance (mm) under which a vertex counts as lying on zmin / zmax
COPLANAR_TOLERANCE = 1e-3


# Component names carrying the sensor silicon; sensors are built as
# module-level wafers, not as sub-volumes
SENSOR_COMPONENTS = frozenset({
    "Sensor", "Sensors", "PS Sensor", "PS Sensors", "2S Sensor", "2S Sensors",
})

# Integer target ids of the material configuration
LEGACY_TARGET_IDS = {
    0: Distribution.UNIFORM_FOUR_WAY,
    3: SubVolumeKind.FRONT,
    4: SubVolumeKind.BACK,
    5: SubVolumeKind.LEFT,
    6: SubVolumeKind.RIGHT,
    7: SubVolumeKind.BETWEEN,
    8: SubVolumeKind.SUPPORT_PLATE,
    34: Distribution.FRONT_BACK_SPLIT,
    56: Distribution.LEFT_RIGHT_SPLIT,
    3456: Distribution.UNIFORM_FOUR_WAY,
}
SENSOR_TARGET_IDS = {1: "inner sensor", 2: "outer sensor"}

_TARGET_NAMES = {
    "front": SubVolumeKind.FRONT,
    "back": SubVolumeKind.BACK,
    "left": SubVolumeKind.LEFT,
    "right": SubVolumeKind.RIGHT,
    "between": SubVolumeKind.BETWEEN,
    "support_plate": SubVolumeKind.SUPPORT_PLATE,
    "front_back": Distribution.FRONT_BACK_SPLIT,
    "left_right": Distribution.LEFT_RIGHT_SPLIT,
    "uniform": Distribution.UNIFORM_FOUR_WAY,
}
_SENSOR_TARGET_NAMES = {"sensor", "inner_sensor", "outer_sensor"}


def resolve_target(target, element=None):
    """
    Turn the target of a material entry into a SubVolumeKind or Distribution.

    Raises SensorMaterialError for sensor targets and UnknownTargetVolumeError
    for anything outside the supported set.
    """
    if isinstance(target, (SubVolumeKind, Distribution)):
        return target
    if isinstance(target, str):
        key = target.strip().lower()
        if key.isdigit():
            return resolve_target(int(key), element)
        if key in _SENSOR_TARGET_NAMES:
            raise SensorMaterialError(
                f"Material {element} targets {key}, sensors are not handled by module decomposition",
                element=element, target=target)
        if key in _TARGET_NAMES:
            return _TARGET_NAMES[key]
    elif isinstance(target, int) and not isinstance(target, bool):
        if target in SENSOR_TARGET_IDS:
            raise SensorMaterialError(
                f"targetVolume {target} ({SENSOR_TARGET_IDS[target]}) is only for sensors "
                f"(material {element})",
                element=element, target=target)
        if target in LEGACY_TARGET_IDS:
            return LEGACY_TARGET_IDS[target]
    raise UnknownTargetVolumeError(f"targetVolume {target!r} is not supported (material {element})",
                                   element=element, target=target)


@dataclass
class SubVolume:
    """
    A box-shaped piece of a module. ``dx``, ``dy``, ``dz`` are half widths
    and ``x``, ``y``, ``z`` the offset from the module center, in the module
    local frame (mm).
    """
    name: str
    kind: SubVolumeKind
    parent: str
    dx: float
    dy: float
    dz: float
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    mass: float = 0.0
    materials: Dict[str, float] = field(default_factory=dict)

    @property
    def volume(self):
        """Volume in mm3"""
        return 8.0 * self.dx * self.dy * self.dz

    @property
    def density(self):
        """Density in g/cm3, zero for empty or degenerate volumes"""
        if self.volume <= 0:
            return 0.0
        return self.mass / (self.volume * MM3_TO_CM3)

    def add_material(self, element, mass):
        self.materials[element] = self.materials.get(element, 0.0) + mass
        self.mass += mass


@dataclass
class ModuleDecomposition:
    name: str
    parent_name: str
    sub_volumes: Tuple[SubVolume, ...]
    envelope: Envelope
    expanded_width: float
    expanded_length: float
    expanded_thickness: float
    vertices: np.ndarray
    expected_mass: float = 0.0

    def sub_volume(self, kind: SubVolumeKind) -> SubVolume:
        for vol in self.sub_volumes:
            if vol.kind is kind:
                return vol
        raise KeyError(kind)

    @property
    def total_mass(self):
        return sum(vol.mass for vol in self.sub_volumes)

    def summary(self):
        lines = [
            f"  Module Name: {self.name}",
            f"    module width     : {self.expanded_width}",
            f"    module length    : {self.expanded_length}",
            f"    module thickness : {self.expanded_thickness}",
        ]
        for vol in self.sub_volumes:
            lines.append(f"    {vol.name}: mass={vol.mass:.6g} g, density={vol.density:.6g} g/cm3")
        lines.append(f"  Module Total Mass = {self.total_mass:.6g} ({self.expected_mass:.6g} is expected.)")
        return "\n".join(lines)


class ModuleComplex:
    """Builds the sub-volumes and the envelope of one module"""

    def __init__(self, module_name, parent_name, capsule: ModuleCapsule):
        module = capsule.module
        self.module_name = module_name
        self.parent_name = parent_name
        self.capsule = capsule
        self.module = module

        self.mod_width = module.width
        self.mod_length = module.length
        self.sensor_thickness = module.sensor_thickness
        self.sensor_distance = module.ds_distance
        self.front_end_hybrid_width = module.front_end_hybrid_width
        self.service_hybrid_width = module.service_hybrid_width
        self.hybrid_thickness = module.hybrid_thickness
        self.support_plate_thickness = module.support_plate_thickness

        self.expanded_width = self.mod_width + 2 * self.service_hybrid_width
        self.expanded_length = self.mod_length + 2 * self.front_end_hybrid_width
        self.expanded_thickness = self.sensor_distance + 2 * (self.support_plate_thickness + self.sensor_thickness)

    def _template(self) -> List[SubVolume]:
        w, l = self.mod_width, self.mod_length
        shw, few = self.service_hybrid_width, self.front_end_hybrid_width
        ht = self.hybrid_thickness
        name, parent = self.module_name, self.parent_name

        def box(kind, dx, dy, dz, x=0.0, y=0.0, z=0.0):
            return SubVolume(name + kind.value, kind, parent, dx / 2.0, dy / 2.0, dz / 2.0, x, y, z)

        support_z = -((self.sensor_distance + self.support_plate_thickness) / 2.0 + self.sensor_thickness)
        return [
            box(SubVolumeKind.FRONT, shw, l, ht, x=(w + shw) / 2.0),
            box(SubVolumeKind.BACK, shw, l, ht, x=-(w + shw) / 2.0),
            box(SubVolumeKind.LEFT, self.expanded_width, few, ht, y=(l + few) / 2.0),
            box(SubVolumeKind.RIGHT, self.expanded_width, few, ht, y=-(l + few) / 2.0),
            box(SubVolumeKind.BETWEEN, w, l, ht),
            box(SubVolumeKind.SUPPORT_PLATE, self.expanded_width, self.expanded_length,
                self.support_plate_thickness, z=support_z),
        ]

    def _expanded_vertices(self):
        module = self.module
        center = np.asarray(module.center, dtype=float)
        normal = np.asarray(module.normal, dtype=float)
        poly = np.asarray(module.base_poly, dtype=float)

        # mx: (v2+v3)/2 - center, my: (v1+v2)/2 - center
        mx = 0.5 * (poly[2] + poly[3]) - center
        my = 0.5 * (poly[1] + poly[2]) - center
        kx = self.expanded_width / self.mod_width if self.mod_width > 0 else 1.0
        ky = self.expanded_length / self.mod_length if self.mod_length > 0 else 1.0

        v = np.array([
            center - kx * mx - ky * my,
            center - kx * mx + ky * my,
            center + kx * mx + ky * my,
            center + kx * mx - ky * my,
        ])
        half = 0.5 * self.expanded_thickness * normal
        return v + half, v - half

    def _envelope(self, top, bottom):
        env = Envelope()
        corners = np.vstack([top, bottom])
        env.xmin, env.xmax = float(corners[:, 0].min()), float(corners[:, 0].max())
        env.ymin, env.ymax = float(corners[:, 1].min()), float(corners[:, 1].max())
        env.zmin, env.zmax = float(corners[:, 2].min()), float(corners[:, 2].max())

        mid_top = 0.5 * (top + np.roll(top, -1, axis=0))
        mid_bottom = 0.5 * (bottom + np.roll(bottom, -1, axis=0))
        points = np.vstack([corners, mid_top, mid_bottom])

        # projection on the xy plane
        radii = np.hypot(points[:, 0], points[:, 1])
        env.rmin, env.rmax = float(radii.min()), float(radii.max())

        at_zmin = np.abs(points[:, 2] - env.zmin) < COPLANAR_TOLERANCE
        at_zmax = np.abs(points[:, 2] - env.zmax) < COPLANAR_TOLERANCE
        env.rmin_at_zmin = float(radii[at_zmin].min())
        env.rmax_at_zmax = float(radii[at_zmax].max())
        return env, corners

    def _assign_materials(self, volumes: List[SubVolume]):
        by_kind = {vol.kind: vol for vol in volumes}
        expected = 0.0
        for entry in self.capsule.materials:
            if entry.component in SENSOR_COMPONENTS:
                continue
            target = resolve_target(entry.target, entry.element)
            expected += entry.mass

            if isinstance(target, SubVolumeKind):
                by_kind[target].add_material(entry.element, entry.mass)
                continue

            targets = [by_kind[kind] for kind in target.kinds]
            total_volume = sum(vol.volume for vol in targets)
            for vol in targets:
                if total_volume > 0:
                    share = vol.volume / total_volume
                else:
                    share = 1.0 / len(targets)
                vol.add_material(entry.element, entry.mass * share)
        return expected

    def build_sub_volumes(self) -> ModuleDecomposition:
        volumes = self._template()
        top, bottom = self._expanded_vertices()
        envelope, corners = self._envelope(top, bottom)
        expected = self._assign_materials(volumes)
        return ModuleDecomposition(
            name=self.module_name,
            parent_name=self.parent_name,
            sub_volumes=tuple(volumes),
            envelope=envelope,
            expanded_width=self.expanded_width,
            expanded_length=self.expanded_length,
            expanded_thickness=self.expanded_thickness,
            vertices=corners,
            expected_mass=expected,
        )


def decompose(capsule: ModuleCapsule, module_name="", parent_name: Optional[str] = None) -> ModuleDecomposition:
    """Decompose one module into sub-volumes and compute its envelope"""
    if parent_name is None:
        parent_name = module_name
    return ModuleComplex(module_name, parent_name, capsule).build_sub_volumes()
