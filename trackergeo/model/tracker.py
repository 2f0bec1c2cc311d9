"""
Read-only tracker model consumed by the extraction: modules, the capsules
pairing them with their material, and the barrel layer / endcap disc tree.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .materials import MaterialEntry


@dataclass(frozen=True)
class UniRef:
    """Position reference of a module: z side, azimuthal index and ring index"""
    side: int
    phi: int
    ring: int


@dataclass(frozen=True)
class SensorROC:
    roc_rows: int = 0
    roc_cols: int = 0
    roc_x: int = 0
    roc_y: int = 0


@dataclass(frozen=True, eq=False)
class Module:
    """
    A detector module. Lengths are in mm, angles in radians.

    ``base_poly`` holds the four vertices (v0..v3) of the module mid-plane
    polygon in the global frame; v0-v1 and v3-v2 run along the module length,
    v1-v2 and v0-v3 along its width.
    """
    center: np.ndarray
    normal: np.ndarray
    base_poly: np.ndarray
    length: float
    min_width: float
    max_width: float
    thickness: float
    sensor_thickness: float
    uni_ref: UniRef
    module_type: str = "pt2S"
    num_sensors: int = 2
    ds_distance: float = 0.0
    front_end_hybrid_width: float = 0.0
    service_hybrid_width: float = 0.0
    hybrid_thickness: float = 0.0
    support_plate_thickness: float = 0.0
    stereo_rotation: float = 0.0
    tilt_angle: float = 0.0
    flipped: bool = False
    inner_sensor: SensorROC = field(default_factory=SensorROC)
    outer_sensor: SensorROC = field(default_factory=SensorROC)

    @property
    def area(self) -> float:
        return 0.5 * (self.min_width + self.max_width) * self.length

    @property
    def width(self) -> float:
        return self.area / self.length if self.length else 0.0

    @property
    def is_rectangular(self) -> bool:
        return self.min_width == self.max_width

    @property
    def rho(self) -> float:
        return float(math.hypot(self.center[0], self.center[1]))

    @property
    def z(self) -> float:
        return float(self.center[2])

    @property
    def phi(self) -> float:
        return float(math.atan2(self.center[1], self.center[0]))

    @property
    def min_z(self) -> float:
        return float(np.min(self.base_poly[:, 2])) - 0.5 * self.thickness * abs(float(self.normal[2]))


@dataclass(frozen=True, eq=False)
class ModuleCapsule:
    """A module together with its material content"""
    module: Module
    materials: Tuple[MaterialEntry, ...] = ()
    radiation_length: float = 0.0
    interaction_length: float = 0.0

    @property
    def local_masses(self) -> Dict[str, float]:
        masses: Dict[str, float] = {}
        for entry in self.materials:
            masses[entry.element] = masses.get(entry.element, 0.0) + entry.mass
        return dict(sorted(masses.items()))

    @property
    def total_mass(self) -> float:
        return sum(entry.mass for entry in self.materials)

    @property
    def surface(self) -> float:
        return self.module.area


@dataclass
class BarrelRod:
    capsules: List[ModuleCapsule] = field(default_factory=list)


@dataclass
class BarrelLayer:
    """
    A barrel layer. ``tilt`` and ``start_angle`` are the rod tilt and the
    azimuth of the first rod, in degrees.
    """
    rods: List[BarrelRod] = field(default_factory=list)
    tilt: float = 0.0
    start_angle: float = 0.0

    @property
    def num_rods(self) -> int:
        return len(self.rods)

    def capsules(self) -> List[ModuleCapsule]:
        return [capsule for rod in self.rods for capsule in rod.capsules]


@dataclass
class EndcapRing:
    index: int
    capsules: List[ModuleCapsule] = field(default_factory=list)

    @property
    def num_modules(self) -> int:
        return len(self.capsules)


@dataclass
class EndcapDisc:
    rings: List[EndcapRing] = field(default_factory=list)

    @property
    def num_rings(self) -> int:
        return len(self.rings)

    def ring(self, index: int) -> EndcapRing:
        for ring in self.rings:
            if ring.index == index:
                return ring
        raise KeyError(f"Ring {index} not found in disc")

    def capsules(self) -> List[ModuleCapsule]:
        return [capsule for ring in self.rings for capsule in ring.capsules]

    @property
    def min_z(self) -> float:
        zs = [capsule.module.min_z for capsule in self.capsules()]
        return min(zs) if zs else 0.0


@dataclass
class Tracker:
    barrel_layers: List[BarrelLayer] = field(default_factory=list)
    endcap_discs: List[EndcapDisc] = field(default_factory=list)


def rectangle_polygon(center: Sequence[float], width_axis: Sequence[float], length_axis: Sequence[float],
                      width: float, length: float, max_width: float = None) -> np.ndarray:
    """
    Build the (v0, v1, v2, v3) polygon of a module.

    v0 = c - w/2 - l/2, v1 = c - w/2 + l/2, v2 = c + w/2 + l/2, v3 = c + w/2 - l/2.
    For wedges, ``width`` is the width at -l/2 and ``max_width`` at +l/2.
    """
    c = np.asarray(center, dtype=float)
    u = np.asarray(width_axis, dtype=float)
    u = u / np.linalg.norm(u)
    v = np.asarray(length_axis, dtype=float)
    v = v / np.linalg.norm(v)
    w_low = width / 2.0
    w_high = (max_width if max_width is not None else width) / 2.0
    half_l = length / 2.0
    return np.array([
        c - w_low * u - half_l * v,
        c - w_high * u + half_l * v,
        c + w_high * u + half_l * v,
        c + w_low * u - half_l * v,
    ])
