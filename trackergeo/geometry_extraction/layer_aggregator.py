"""
Flatten the tracker tree into per-layer and per-disc lists of module capsules.
"""

from dataclasses import dataclass
from typing import Tuple

from trackergeo.model.tracker import BarrelLayer, EndcapDisc, ModuleCapsule, Tracker


@dataclass(frozen=True)
class LayerEntry:
    index: int
    layer: BarrelLayer
    capsules: Tuple[ModuleCapsule, ...]
    is_tilted: bool
    num_rods: int


@dataclass(frozen=True)
class DiscEntry:
    index: int
    disc: EndcapDisc
    capsules: Tuple[ModuleCapsule, ...]
    num_rings: int
    min_z: float


@dataclass(frozen=True)
class LayerTopology:
    barrel_layers: Tuple[LayerEntry, ...]
    endcap_discs: Tuple[DiscEntry, ...]

    @property
    def num_layers(self):
        return len(self.barrel_layers)

    @property
    def num_discs(self):
        return len(self.endcap_discs)


def aggregate_layers(tracker: Tracker) -> LayerTopology:
    """
    Walk the tracker once, layers and discs in increasing index, keeping the
    tracker's own module order inside each of them.
    """
    layers = []
    for index, layer in enumerate(tracker.barrel_layers, start=1):
        capsules = tuple(capsule for rod in layer.rods for capsule in rod.capsules)
        is_tilted = any(capsule.module.tilt_angle != 0 for capsule in capsules)
        layers.append(LayerEntry(index, layer, capsules, is_tilted, layer.num_rods))

    discs = []
    for index, disc in enumerate(tracker.endcap_discs, start=1):
        capsules = tuple(capsule for ring in disc.rings for capsule in ring.capsules)
        discs.append(DiscEntry(index, disc, capsules, disc.num_rings, disc.min_z))

    return LayerTopology(tuple(layers), tuple(discs))
