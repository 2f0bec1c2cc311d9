"""
Output records of the extraction and the collector that accumulates them.

Records are plain values; the collector keeps them in emission order and
refuses name collisions so that a topology bug never silently replaces an
earlier record.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from trackergeo.errors import DuplicateRecordError


class ShapeType(enum.Enum):
    BOX = "Box"
    TRAPEZOID = "Trapezoid"
    TUBE = "Tubs"
    CONE = "Cone"
    POLYCONE = "Polycone"
    INTERSECTION = "IntersectionSolid"


@dataclass(frozen=True)
class Shape:
    """
    A named solid. Boxes and trapezoids use half lengths (dx, dxx, dy, dyy,
    dz), tubes rmin/rmax/dz, cone sections rmin1/rmax1 (at -dz) and
    rmin2/rmax2 (at +dz), polycones two (r, z) polylines and intersections
    the names of their two solids.
    """
    name: str
    type: ShapeType
    dx: float = 0.0
    dy: float = 0.0
    dz: float = 0.0
    dxx: float = 0.0
    dyy: float = 0.0
    rmin: float = 0.0
    rmax: float = 0.0
    rmin1: float = 0.0
    rmax1: float = 0.0
    rmin2: float = 0.0
    rmax2: float = 0.0
    rz_up: Tuple[Tuple[float, float], ...] = ()
    rz_down: Tuple[Tuple[float, float], ...] = ()
    solid1: str = ""
    solid2: str = ""


@dataclass(frozen=True)
class LogicalVolume:
    name: str
    shape: str
    material: str


@dataclass(frozen=True)
class Placement:
    parent: str
    child: str
    translation: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Optional[str] = None
    copy: int = 1

    @property
    def key(self):
        return (self.parent, self.child, self.copy)


@dataclass(frozen=True)
class Rotation:
    """Rotation given by the polar and azimuthal angles (deg) of the new x, y, z axes"""
    name: str
    theta_x: float
    phi_x: float
    theta_y: float
    phi_y: float
    theta_z: float
    phi_z: float


@dataclass(frozen=True)
class AlgoParameter:
    name: str
    kind: str       # 'string', 'numeric' or 'vector'
    value: object
    unit: str = ""

    @classmethod
    def string(cls, name, value):
        return cls(name, "string", value)

    @classmethod
    def numeric(cls, name, value, unit=""):
        return cls(name, "numeric", value, unit)

    @classmethod
    def vector(cls, name, x, y, z):
        return cls(name, "vector", (float(x), float(y), float(z)))


@dataclass(frozen=True)
class ReplicationAlgorithmCall:
    name: str
    parent: str
    parameters: Tuple[AlgoParameter, ...] = ()

    def parameter(self, name):
        for param in self.parameters:
            if param.name == name:
                return param
        raise KeyError(f"Algorithm {self.name} has no parameter {name}")


@dataclass(frozen=True)
class CompositeMaterial:
    name: str
    density: float
    elements: Tuple[Tuple[str, float], ...]
    method: str = "mixture by weight"


@dataclass(frozen=True)
class ElementaryMaterial:
    tag: str
    density: float
    atomic_weight: float
    atomic_number: int


@dataclass(frozen=True)
class ModuleROCInfo:
    name: str = ""
    roc_rows: int = 0
    roc_cols: int = 0
    roc_x: int = 0
    roc_y: int = 0


@dataclass
class TopologySelector:
    name: str
    parameter: Tuple[str, str]
    part_selectors: List[str] = field(default_factory=list)
    module_types: List[ModuleROCInfo] = field(default_factory=list)

    def add(self, part, module_type: Optional[ModuleROCInfo] = None):
        self.part_selectors.append(part)
        self.module_types.append(module_type if module_type is not None else ModuleROCInfo())


@dataclass(frozen=True)
class RadiationLengthSummary:
    barrel: bool
    index: int
    radiation_length: float
    interaction_length: float


class RecordCollector:
    """Append-only sink for the records produced by one or more passes"""

    def __init__(self):
        self.clear()

    def clear(self):
        self.elements: List[ElementaryMaterial] = []
        self.composites: List[CompositeMaterial] = []
        self.shapes: List[Shape] = []
        self.logical_volumes: List[LogicalVolume] = []
        self.placements: List[Placement] = []
        self.rotations: Dict[str, Rotation] = {}
        self.algorithms: List[ReplicationAlgorithmCall] = []
        self.selectors: List[TopologySelector] = []
        self.radiation_lengths: List[RadiationLengthSummary] = []
        self._shape_names = set()
        self._logical_names = set()
        self._placement_keys = set()
        self._composite_names = set()

    def add_element(self, element: ElementaryMaterial):
        self.elements.append(element)

    def add_composite(self, composite: CompositeMaterial):
        if composite.name in self._composite_names:
            raise DuplicateRecordError("composite", composite.name)
        self._composite_names.add(composite.name)
        self.composites.append(composite)

    def add_shape(self, shape: Shape):
        if shape.name in self._shape_names:
            raise DuplicateRecordError("shape", shape.name)
        self._shape_names.add(shape.name)
        self.shapes.append(shape)

    def add_logical_volume(self, logic: LogicalVolume):
        if logic.name in self._logical_names:
            raise DuplicateRecordError("logical volume", logic.name)
        self._logical_names.add(logic.name)
        self.logical_volumes.append(logic)

    def add_placement(self, placement: Placement):
        if placement.key in self._placement_keys:
            raise DuplicateRecordError("placement", f"{placement.child} in {placement.parent} "
                                                    f"(copy {placement.copy})")
        self._placement_keys.add(placement.key)
        self.placements.append(placement)

    def add_rotation(self, rotation: Rotation):
        existing = self.rotations.get(rotation.name)
        if existing is not None:
            if existing != rotation:
                raise DuplicateRecordError("rotation", rotation.name)
            return
        self.rotations[rotation.name] = rotation

    def add_algorithm(self, algorithm: ReplicationAlgorithmCall):
        self.algorithms.append(algorithm)

    def add_selector(self, selector: TopologySelector):
        """Selectors without any part are dropped"""
        if selector.part_selectors:
            self.selectors.append(selector)

    def add_radiation_length(self, summary: RadiationLengthSummary):
        self.radiation_lengths.append(summary)

    def merge(self, other: "RecordCollector"):
        """Append every record of ``other``, keeping the uniqueness checks"""
        for element in other.elements:
            self.add_element(element)
        for composite in other.composites:
            self.add_composite(composite)
        for shape in other.shapes:
            self.add_shape(shape)
        for logic in other.logical_volumes:
            self.add_logical_volume(logic)
        for placement in other.placements:
            self.add_placement(placement)
        for rotation in other.rotations.values():
            self.add_rotation(rotation)
        for algorithm in other.algorithms:
            self.add_algorithm(algorithm)
        for selector in other.selectors:
            self.add_selector(selector)
        for summary in other.radiation_lengths:
            self.add_radiation_length(summary)
        return self

    def shape(self, name) -> Shape:
        for shape in self.shapes:
            if shape.name == name:
                return shape
        raise KeyError(f"Shape {name} not found")

    def logical_volume(self, name) -> LogicalVolume:
        for logic in self.logical_volumes:
            if logic.name == name:
                return logic
        raise KeyError(f"Logical volume {name} not found")

    def composite(self, name) -> CompositeMaterial:
        for composite in self.composites:
            if composite.name == name:
                return composite
        raise KeyError(f"Composite {name} not found")

    def selector(self, name) -> TopologySelector:
        for selector in self.selectors:
            if selector.name == name:
                return selector
        raise KeyError(f"Topology selector {name} not found")

    def placements_of(self, child) -> List[Placement]:
        return [p for p in self.placements if p.child == child]

    def counts(self):
        return {
            'elements': len(self.elements),
            'composites': len(self.composites),
            'shapes': len(self.shapes),
            'logical_volumes': len(self.logical_volumes),
            'placements': len(self.placements),
            'rotations': len(self.rotations),
            'algorithms': len(self.algorithms),
            'selectors': len(self.selectors),
            'radiation_lengths': len(self.radiation_lengths),
        }

    def to_dict(self):
        return {
            'elements': [asdict(e) for e in self.elements],
            'composites': [asdict(c) for c in self.composites],
            'shapes': [asdict(s) for s in self.shapes],
            'logical_volumes': [asdict(l) for l in self.logical_volumes],
            'placements': [asdict(p) for p in self.placements],
            'rotations': [asdict(r) for r in self.rotations.values()],
            'algorithms': [asdict(a) for a in self.algorithms],
            'selectors': [asdict(t) for t in self.selectors],
            'radiation_lengths': [asdict(r) for r in self.radiation_lengths],
        }

    def __eq__(self, other):
        if not isinstance(other, RecordCollector):
            return NotImplemented
        return self.to_dict() == other.to_dict()
