from __future__ import annotations

from typing import List, Optional, Set, Tuple

from .topology import TopologyStore


class Reachability:
    """Decides whether two NFs can exchange messages.

    Two nodes are connected when they share a link or a bus. A UE may also
    reach a core NF through gNBs: breadth-first over UE->gNB->gNB links, up to
    ``max_depth`` radio hops. Depth 1 is the classic "UE reaches the AMF via
    its gNB" case.
    """

    bridge_kind = "gNB"
    terminal_kind = "UE"

    def __init__(self, store: TopologyStore, max_depth: int = 1):
        self.store = store
        self.max_depth = max(0, int(max_depth))

    def adjacent(self, a: str, b: str) -> bool:
        """Direct link or shared bus."""
        if self.store.link_between(a, b) is not None:
            return True
        return bool(self.store.bus_ids_for(a) & self.store.bus_ids_for(b))

    def are_connected(self, a: str, b: str) -> bool:
        na = self.store.get(a)
        nb = self.store.get(b)
        if na is None or nb is None:
            return False
        if na.uid == nb.uid:
            return True

        if self.adjacent(na.uid, nb.uid):
            return True

        a_term = na.kind == self.terminal_kind
        b_term = nb.kind == self.terminal_kind
        if a_term == b_term:
            return False

        ue, other = (na.uid, nb.uid) if a_term else (nb.uid, na.uid)
        return self.bridge_path(ue, other) is not None

    def bridge_path(self, ue: str, other: str) -> Optional[List[str]]:
        """Return [ue, gNB..., other] if ``other`` is reachable through radio units."""
        if self.max_depth == 0:
            return None

        start: Tuple[str, ...] = (ue,)
        seen: Set[str] = {ue}
        q: List[Tuple[str, ...]] = [start]

        while q:
            path = q.pop(0)
            cur = path[-1]
            hops = len(path) - 1
            if hops >= self.max_depth:
                continue
            for nxt in self.store.neighbors(cur):
                if nxt in seen:
                    continue
                node = self.store.get(nxt)
                if node is None or node.kind != self.bridge_kind:
                    continue
                seen.add(nxt)
                if self.adjacent(nxt, other):
                    return list(path) + [nxt, other]
                q.append(path + (nxt,))
        return None
