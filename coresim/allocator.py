from __future__ import annotations

from typing import Optional
import random
import time

from .config import EngineConfig
from .topology import AddressPool, PoolAllocation, TopologyError, TopologyStore


class ResourceAllocator:
    """UE address pools on UPF nodes plus session/tunnel identifiers.

    Allocation and release are single synchronous steps (read-check-write with
    no suspension), which is all the locking concurrent sessions need.

    Identifiers are random within a bounded namespace and never checked for
    collisions; fine at lab scale, swap for a counter if that ever matters.
    """

    def __init__(self, store: TopologyStore, config: Optional[EngineConfig] = None,
                 rng: Optional[random.Random] = None, log=None):
        self.store = store
        self.config = config or EngineConfig()
        self.rng = rng or random.Random(self.config.seed)
        self.log = log

    # ───────────────────────────── Pools ─────────────────────────────

    def init_pool(self, upf_id: str) -> AddressPool:
        upf = self.store.require(upf_id)
        if upf.kind != "UPF":
            raise TopologyError(f"{upf.name} is not a UPF")
        if upf.config.tun0 is not None:
            return upf.config.tun0

        cfg = self.config
        pool = AddressPool(
            network=cfg.pool_network,
            gateway_ip=cfg.pool_gateway,
            first_host=cfg.pool_first_host,
            last_host=cfg.pool_last_host,
            next_available=cfg.pool_first_host,
        )
        self.store.update_config(upf.uid, tun0=pool)
        if self.log is not None:
            self.log.add(upf.uid, "SUCCESS", f"{pool.interface_name} interface created", {
                "network": pool.network,
                "gatewayIP": pool.gateway_ip,
                "range": f"{pool.host_address(pool.first_host)}-{pool.host_address(pool.last_host)}",
            })
        return pool

    def pool_for(self, upf_id: str) -> Optional[AddressPool]:
        upf = self.store.get(upf_id)
        if upf is None:
            return None
        return upf.config.tun0

    def allocate(self, pool: AddressPool, ue_id: str, ue_name: str = "", owner: str = "") -> str:
        """Hand out the first free address at or after ``next_available``.

        Wraps to the start of the range once before giving up. On exhaustion
        the fixed fallback address is returned and nothing is recorded.
        """
        lo, hi = pool.first_host, pool.last_host
        start = min(max(pool.next_available, lo), hi + 1)
        candidates = list(range(start, hi + 1)) + list(range(lo, start))

        for host in candidates:
            ip = pool.host_address(host)
            if ip in pool.assigned:
                continue
            pool.assigned[ip] = PoolAllocation(ue_id=ue_id, ue_name=ue_name or ue_id, ip=ip,
                                               assigned_at=time.time())
            pool.next_available = host + 1
            return ip

        if self.log is not None:
            self.log.add(owner or ue_id, "WARNING", "UE address pool exhausted, using fallback address", {
                "fallback": self.config.pool_fallback,
                "assigned": len(pool.assigned),
            })
        return self.config.pool_fallback

    def release(self, pool: Optional[AddressPool], ue_id: str) -> Optional[str]:
        """Drop every allocation held by ``ue_id``; returns the freed address."""
        if pool is None:
            return None
        freed = None
        for ip in [ip for ip, a in pool.assigned.items() if a.ue_id == ue_id]:
            pool.assigned.pop(ip, None)
            freed = ip
        return freed

    # ───────────────────────────── Identifiers ─────────────────────────────

    def new_session_id(self) -> int:
        return self.rng.randint(1, 255)

    def new_tunnel_id(self) -> str:
        return f"gtp-{self.rng.randint(1000, 9999)}"

    def new_teid(self) -> int:
        return self.rng.randint(0, 4294967294)
