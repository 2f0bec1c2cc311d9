"""
Material-side inputs of the extraction: the global material table, material
entries carried by module capsules, and the inactive (service / support)
elements.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Union


class SubVolumeKind(enum.Enum):
    FRONT = "FSide"
    BACK = "BSide"
    LEFT = "LSide"
    RIGHT = "RSide"
    BETWEEN = "Between"
    SUPPORT_PLATE = "SupportPlate"


# The four hybrids that share split materials
HYBRID_KINDS = (SubVolumeKind.FRONT, SubVolumeKind.BACK, SubVolumeKind.LEFT, SubVolumeKind.RIGHT)


class Distribution(enum.Enum):
    """Policies spreading one material entry over several sub-volumes"""
    FRONT_BACK_SPLIT = "front_back"
    LEFT_RIGHT_SPLIT = "left_right"
    UNIFORM_FOUR_WAY = "uniform"

    @property
    def kinds(self):
        if self is Distribution.FRONT_BACK_SPLIT:
            return (SubVolumeKind.FRONT, SubVolumeKind.BACK)
        if self is Distribution.LEFT_RIGHT_SPLIT:
            return (SubVolumeKind.LEFT, SubVolumeKind.RIGHT)
        return HYBRID_KINDS


Target = Union[SubVolumeKind, Distribution, int, str]


class MaterialCategory(enum.Enum):
    BARREL_MODULE = "b_mod"
    ENDCAP_MODULE = "e_mod"
    BARREL_SERVICE = "b_ser"
    ENDCAP_SERVICE = "e_ser"
    BARREL_SUPPORT = "b_sup"
    ENDCAP_SUPPORT = "e_sup"
    OUTER_SUPPORT = "o_sup"
    TUBE_SUPPORT = "t_sup"
    USER_SUPPORT = "u_sup"


@dataclass(frozen=True)
class MaterialEntry:
    """
    One elemental mass deposited on a module.

    ``target`` is either a resolved SubVolumeKind / Distribution or a raw
    target id (integer or string) as found in the layout description; raw
    ids are resolved, and rejected when invalid, during decomposition.
    """
    element: str
    mass: float
    component: str = ""
    target: Target = Distribution.UNIFORM_FOUR_WAY


@dataclass(frozen=True)
class MaterialRow:
    tag: str
    density: float              # g/cm3
    radiation_length: float     # g/cm2
    interaction_length: float   # g/cm2


class MaterialTable:
    """Ordered rows of elementary materials, looked up by tag"""

    def __init__(self, rows: Sequence[MaterialRow] = ()):
        self._rows: List[MaterialRow] = []
        self._index: Dict[str, int] = {}
        for row in rows:
            self.add(row)

    def add(self, row: MaterialRow) -> None:
        if row.tag in self._index:
            raise ValueError(f"Material {row.tag} is defined twice in the material table")
        self._index[row.tag] = len(self._rows)
        self._rows.append(row)

    def get(self, tag: str) -> MaterialRow:
        try:
            return self._rows[self._index[tag]]
        except KeyError:
            raise KeyError(f"Material {tag} not found in the material table") from None

    def __contains__(self, tag) -> bool:
        return tag in self._index

    def __iter__(self) -> Iterator[MaterialRow]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)


def load_material_table(path) -> MaterialTable:
    """
    Read a whitespace separated material table.

    Each non-comment line holds ``tag density radiation_length interaction_length``.
    Lines starting with '#' and blank lines are ignored.
    """
    table = MaterialTable()
    for lineno, line in enumerate(Path(path).read_text().splitlines(), start=1):
        line = line.split('#', 1)[0].strip()
        if not line:
            continue
        fields = line.split()
        if len(fields) != 4:
            raise ValueError(f"{path}:{lineno}: expected 4 columns, found {len(fields)}")
        tag, density, rlength, ilength = fields
        try:
            table.add(MaterialRow(tag, float(density), float(rlength), float(ilength)))
        except ValueError as e:
            raise ValueError(f"{path}:{lineno}: {e}") from e
    return table


@dataclass(frozen=True)
class InactiveElement:
    """A tube-shaped service or support volume"""
    inner_radius: float
    r_width: float
    z_offset: float
    z_length: float
    category: MaterialCategory
    local_masses: Mapping[str, float] = field(default_factory=dict)

    @property
    def total_mass(self) -> float:
        return sum(self.local_masses.values())

    @property
    def outer_radius(self) -> float:
        return self.inner_radius + self.r_width


@dataclass
class InactiveSurfaces:
    barrel_services: List[InactiveElement] = field(default_factory=list)
    endcap_services: List[InactiveElement] = field(default_factory=list)
    supports: List[InactiveElement] = field(default_factory=list)


def radiation_budget(masses: Mapping[str, float], surface_mm2: float, table: MaterialTable,
                     interaction: bool = False) -> float:
    """
    Material budget of a set of elemental masses spread over a surface,
    in units of radiation length (or interaction length).
    """
    if surface_mm2 <= 0:
        return 0.0
    surface_cm2 = surface_mm2 / 100.0
    total = 0.0
    for tag, mass in masses.items():
        row = table.get(tag)
        length = row.interaction_length if interaction else row.radiation_length
        total += mass / (length * surface_cm2)
    return total


def category_from_string(value: Optional[str]) -> MaterialCategory:
    try:
        return MaterialCategory(value)
    except ValueError:
        raise ValueError(f"Unknown material category: {value}") from None
