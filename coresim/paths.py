from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .topology import Bus, Node, TopologyStore


@dataclass(frozen=True)
class Point:
    x: float
    y: float


def bus_attach_point(node: Node, bus: Bus) -> Point:
    # Horizontal bus: straight above/below the node. Vertical: beside it.
    if bus.orientation == "horizontal":
        return Point(node.x, bus.y)
    return Point(bus.x, node.y)


class PathPlanner:
    """Turns "send A->B" into canvas waypoints, routed along a shared bus."""

    def __init__(self, store: TopologyStore, slide_threshold: float = 10.0):
        self.store = store
        self.slide_threshold = slide_threshold

    def compute_path(self, source_id: str, target_id: str) -> List[Point]:
        source = self.store.require(source_id)
        target = self.store.require(target_id)

        path: List[Point] = [Point(source.x, source.y)]

        bus = self.store.common_bus(source.uid, target.uid)
        if bus is not None:
            src_pt = bus_attach_point(source, bus)
            dst_pt = bus_attach_point(target, bus)
            path.append(src_pt)

            if bus.orientation == "horizontal":
                if abs(src_pt.x - dst_pt.x) > self.slide_threshold:
                    path.append(Point(dst_pt.x, src_pt.y))
            else:
                if abs(src_pt.y - dst_pt.y) > self.slide_threshold:
                    path.append(Point(src_pt.x, dst_pt.y))

            path.append(dst_pt)

        path.append(Point(target.x, target.y))
        return path

