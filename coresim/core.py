from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional
import asyncio
import random

from .allocator import ResourceAllocator
from .animation import AnimationScheduler
from .config import EngineConfig
from .deploy import deploy as deploy_snapshot
from .paths import PathPlanner
from .reachability import Reachability
from .session_log import EventLog
from .sessions import SessionOrchestrator
from .topology import TopologyStore


class CoreSim:
    """One simulated core: the store plus every service that works on it.

    Components never reach for module globals; each gets the shared store,
    log and config from here, so any of them can also be built standalone.
    """

    def __init__(self, config: Optional[EngineConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or EngineConfig.from_env()
        cfg = self.config

        self.log = EventLog(max_events=cfg.max_events)
        self.store = TopologyStore(log=self.log)
        self.reachability = Reachability(self.store, max_depth=cfg.reachability_depth)
        self.allocator = ResourceAllocator(self.store, cfg, rng=rng, log=self.log)
        self.planner = PathPlanner(self.store, slide_threshold=cfg.bus_slide_threshold_px)
        self.scheduler = AnimationScheduler(
            tick_interval_sec=cfg.tick_interval_sec,
            default_speed=cfg.token_speed,
            autorun=cfg.autorun,
            log=self.log,
        )
        self.sessions = SessionOrchestrator(
            self.store,
            self.reachability,
            self.allocator,
            self.planner,
            self.scheduler,
            self.log,
            cfg,
        )

        self.store.subscribe(self._on_topology_event)

    def _on_topology_event(self, event: str, data: Dict[str, Any]) -> None:
        if event == "link_added":
            a = self.store.get(data["a"])
            b = self.store.get(data["b"])
            if a is None or b is None:
                return
            # Linking a UPF to the data network brings up its tun0 pool.
            if {a.kind, b.kind} == {"UPF", "ext-dn"}:
                upf = a if a.kind == "UPF" else b
                self.allocator.init_pool(upf.uid)
        elif event == "node_removed":
            session = self.sessions.sessions.get(data["uid"])
            if session is not None and session.state == "ACTIVE":
                self.sessions.cleanup(data["uid"])
            self.sessions.drop_session(data["uid"])

    # ───────────────────────────── Lifecycle ─────────────────────────────

    def reset(self) -> None:
        """Drop tokens, sessions and the whole topology."""
        # Orphan suspended flows before their continuations fire.
        self.sessions.reset()
        self.scheduler.clear()
        self.scheduler.stop()
        self.store.clear()

    async def boot_node(self, uid: str) -> bool:
        """Start an NF and wait until it reports stable."""
        node = self.store.require(uid)
        self.store.set_status(node.uid, "starting")
        self.log.add(node.uid, "INFO", f"Starting {node.name}...")

        await asyncio.sleep(self.config.scaled(self.config.node_startup_sec))

        # Removed or failed while starting up.
        node = self.store.get(uid)
        if node is None or node.status != "starting":
            return False
        self.store.set_status(node.uid, "stable")
        self.log.add(node.uid, "SUCCESS", f"{node.name} is stable")
        return True

    def fail_node(self, uid: str) -> None:
        node = self.store.require(uid)
        self.store.set_status(node.uid, "failed")
        self.log.add(node.uid, "ERROR", f"{node.name} failed")

    # ───────────────────────────── Sessions ─────────────────────────────

    async def establish(self, ue_id: str) -> bool:
        return await self.sessions.establish(ue_id)

    async def release(self, ue_id: str) -> bool:
        return await self.sessions.release(ue_id)

    def deploy(self, snapshot):
        return deploy_snapshot(self, snapshot)

    async def run_pdu_session(self, ue_id: str, release: bool = False) -> Dict[str, Any]:
        """Establish (and optionally release) a session; summary for tool callers."""
        established = await self.sessions.establish(ue_id)

        session = self.sessions.get_session(ue_id)
        ue = self.store.get(ue_id)
        tun = ue.config.tun_interface if ue is not None else None
        out: Dict[str, Any] = {
            "ueId": ue_id,
            "established": established,
            "released": None,
            "sessionId": session.session_id,
            "assignedIP": session.assigned_ip,
            "tunnelId": session.tunnel_id,
            "tunInterface": asdict(tun) if tun is not None else None,
        }

        if release and established:
            out["released"] = await self.sessions.release(ue_id)

        out["state"] = self.sessions.session_state(ue_id)
        out["log"] = self.log.to_dict()
        return out
