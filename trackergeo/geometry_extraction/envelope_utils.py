"""
Numeric helpers shared by the module decomposition and the extraction passes:
envelope bookkeeping, partner-module search, rim offsets and the material
conversions (densities, atomic numbers).
"""

import math
from typing import Iterable, Optional, Sequence

from trackergeo.model.materials import InactiveElement, MaterialTable
from trackergeo.model.tracker import ModuleCapsule


MM3_TO_CM3 = 1e-3


class Envelope:
    """
    Running min/max extrema of a geometric entity.

    Minima start at +inf and maxima at -inf, so an envelope is empty until
    at least one point or envelope has been folded in.
    """

    __slots__ = ("xmin", "xmax", "ymin", "ymax", "zmin", "zmax", "rmin", "rmax",
                 "rmin_at_zmin", "rmax_at_zmax")

    def __init__(self):
        inf = math.inf
        self.xmin, self.xmax = inf, -inf
        self.ymin, self.ymax = inf, -inf
        self.zmin, self.zmax = inf, -inf
        self.rmin, self.rmax = inf, -inf
        self.rmin_at_zmin, self.rmax_at_zmax = inf, -inf

    @property
    def is_empty(self):
        return self.rmin > self.rmax

    def merge(self, other):
        """Fold another envelope into this one; returns self"""
        if other.is_empty:
            return self
        self.xmin = min(self.xmin, other.xmin)
        self.xmax = max(self.xmax, other.xmax)
        self.ymin = min(self.ymin, other.ymin)
        self.ymax = max(self.ymax, other.ymax)
        self.rmin = min(self.rmin, other.rmin)
        self.rmax = max(self.rmax, other.rmax)
        # radius at the z extrema follows whichever envelope owns the extremum
        if other.zmin < self.zmin:
            self.rmin_at_zmin = other.rmin_at_zmin
        elif other.zmin == self.zmin:
            self.rmin_at_zmin = min(self.rmin_at_zmin, other.rmin_at_zmin)
        if other.zmax > self.zmax:
            self.rmax_at_zmax = other.rmax_at_zmax
        elif other.zmax == self.zmax:
            self.rmax_at_zmax = max(self.rmax_at_zmax, other.rmax_at_zmax)
        self.zmin = min(self.zmin, other.zmin)
        self.zmax = max(self.zmax, other.zmax)
        return self

    def copy(self):
        env = Envelope()
        for name in self.__slots__:
            setattr(env, name, getattr(self, name))
        return env

    def as_dict(self):
        return {name: getattr(self, name) for name in self.__slots__}

    def __repr__(self):
        return (f"Envelope(x=[{self.xmin:.3f}, {self.xmax:.3f}], y=[{self.ymin:.3f}, {self.ymax:.3f}], "
                f"z=[{self.zmin:.3f}, {self.zmax:.3f}], r=[{self.rmin:.3f}, {self.rmax:.3f}])")


def merge_envelopes(envelopes: Iterable[Envelope]) -> Envelope:
    result = Envelope()
    for env in envelopes:
        result.merge(env)
    return result


def find_partner_module(capsules: Sequence[ModuleCapsule], start: int, ring: int,
                        find_first: bool = False) -> Optional[int]:
    """
    Find the partner of a module: a module on the same ring index but on the
    opposite side of z=0.

    Parameters:
    -----------
    capsules : sequence of ModuleCapsule
        Modules of one layer, in tracker order
    start : int
        Index of the original module; the search runs forward from here
    ring : int
        Ring index (position along the rod) of the original module
    find_first : bool
        Stop at the first module on the ring, whatever its side

    Returns:
    --------
    int or None : index of the partner module, None when there is none
    """
    if start >= len(capsules):
        return None
    plus = capsules[start].module.uni_ref.side > 0
    for index in range(start, len(capsules)):
        ref = capsules[index].module.uni_ref
        if ref.ring != ring:
            continue
        if find_first:
            return index
        if (plus and ref.side < 0) or (not plus and ref.side > 0):
            return index
    return None


def from_rim(r, w):
    """
    Radial distance of the outer surface of a rod of half width ``w`` from the
    arc of radius ``r`` enclosing it.
    """
    s = math.asin(w / r)
    return r * (1.0 - math.cos(s))


def atomic_number(x0, a):
    """
    Approximate atomic number from radiation length and atomic weight.

    Returns -1 when the inputs do not describe a physical material.
    """
    if x0 <= 0:
        return -1
    d = 4.0 - 4.0 * (1.0 - 181.0 * a / x0)
    if d > 0:
        return int(math.floor((math.sqrt(d) - 2.0) / 2.0 + 0.5))
    return -1


def atomic_weight(interaction_length):
    return (interaction_length / 35.0) ** 3


def inactive_density(element: InactiveElement):
    """Overall density of an inactive tube, in g/cm3"""
    outer = element.inner_radius + element.r_width
    area = outer * outer - element.inner_radius * element.inner_radius
    volume = math.pi * element.z_length * area
    if volume <= 0:
        return 0.0
    return element.total_mass / (volume * MM3_TO_CM3)


def module_density(capsule: ModuleCapsule, sensor_tag: str, no_sensors: bool = True):
    """
    Density of the material mix of a module over its nominal volume, in g/cm3,
    optionally leaving out the sensor silicon.
    """
    volume = capsule.surface * capsule.module.thickness
    if volume <= 0:
        return 0.0
    masses = capsule.local_masses
    if no_sensors:
        mass = sum(m for tag, m in masses.items() if tag != sensor_tag)
    else:
        mass = sum(masses.values())
    return mass / (volume * MM3_TO_CM3)


def calculate_sensor_thickness(capsule: ModuleCapsule, table: MaterialTable, sensor_tag: str):
    """
    Thickness in mm of the sensor material of a module, from the mass of
    sensor silicon it carries. A material table without the sensor silicon
    gives zero.
    """
    mass = capsule.local_masses.get(sensor_tag, 0.0)
    try:
        density = table.get(sensor_tag).density
    except KeyError:
        return 0.0
    surface = capsule.surface
    if density <= 0 or surface <= 0:
        return 0.0
    return mass / (density * MM3_TO_CM3 * surface)


def normalized_fractions(masses):
    """Return ``(element, fraction)`` pairs whose fractions sum to one"""
    total = sum(masses.values())
    if total <= 0:
        return []
    return [(tag, mass / total) for tag, mass in masses.items()]
