from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import re
import time

from .allocator import ResourceAllocator
from .animation import AnimationScheduler
from .config import EngineConfig
from .flows import ESTABLISHMENT_FLOW, RELEASE_FLOW, FlowContext, Step
from .paths import PathPlanner
from .reachability import Reachability
from .session_log import EventLog
from .topology import Node, PDUSessionRecord, TopologyStore, TunnelInterface


IDLE = "IDLE"
ESTABLISHING = "ESTABLISHING"
ACTIVE = "ACTIVE"
RELEASING = "RELEASING"
RELEASED = "RELEASED"

SESSION_STATES = (IDLE, ESTABLISHING, ACTIVE, RELEASING, RELEASED)


class SessionError(Exception):
    pass


class StaleFlowError(SessionError):
    """The topology was reset while the flow was suspended."""


@dataclass
class Session:
    ue_id: str
    state: str = IDLE
    session_id: Optional[int] = None
    assigned_ip: Optional[str] = None
    tunnel_id: Optional[str] = None
    teid: Optional[int] = None
    upf_id: Optional[str] = None
    created_at: Optional[float] = None
    # message ids exchanged in the current/last cycle
    messages: List[str] = field(default_factory=list)

    def reset(self, state: str) -> None:
        self.state = state
        self.session_id = None
        self.assigned_ip = None
        self.tunnel_id = None
        self.teid = None
        self.upf_id = None
        self.created_at = None


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    # ue/amf/smf/upf when valid
    nfs: Optional[Dict[str, Node]] = None


SessionListener = Callable[[str, Dict[str, Any]], None]


class SessionOrchestrator:
    """PDU session state machine, one session per UE.

    IDLE/RELEASED -> ESTABLISHING -> ACTIVE -> RELEASING -> RELEASED.

    A flow only suspends while a token is in flight or during a settling
    delay. The state field is flipped before the first suspension, so a second
    ``establish`` on the same UE is rejected rather than queued. Flows for
    different UEs interleave freely.
    """

    def __init__(
        self,
        store: TopologyStore,
        reachability: Reachability,
        allocator: ResourceAllocator,
        planner: PathPlanner,
        scheduler: AnimationScheduler,
        log: EventLog,
        config: Optional[EngineConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.reachability = reachability
        self.allocator = allocator
        self.planner = planner
        self.scheduler = scheduler
        self.log = log
        self.config = config or EngineConfig()
        self._sleep = sleep or asyncio.sleep

        self.sessions: Dict[str, Session] = {}
        self._listeners: List[SessionListener] = []
        self._message_counter = 0
        # bumped by reset(); suspended flows from an older generation abort
        self._generation = 0

    # ───────────────────────────── Sessions ─────────────────────────────

    def get_session(self, ue_id: str) -> Session:
        """Return the session tracked for ``ue_id``.

        Only existing UEs get a tracked entry. Any other id yields a
        throwaway IDLE session that is not stored.
        """
        session = self.sessions.get(ue_id)
        if session is not None:
            return session
        session = Session(ue_id=ue_id)
        node = self.store.get(ue_id)
        if node is not None and node.kind == "UE":
            self.sessions[ue_id] = session
        return session

    def drop_session(self, ue_id: str) -> None:
        self.sessions.pop(ue_id, None)

    def reset(self) -> None:
        """Forget every session and orphan any flow still in flight."""
        self._generation += 1
        self.sessions.clear()

    def session_state(self, ue_id: str) -> str:
        return self.get_session(ue_id).state

    def generate_message_id(self) -> str:
        self._message_counter += 1
        return f"msg-{int(time.time() * 1000)}-{self._message_counter}"

    # ───────────────────────────── Validation ─────────────────────────────

    def _stable_in_subnet(self, kind: str, subnet: str) -> List[Node]:
        return [n for n in self.store.nodes_of_kind(kind) if n.is_stable() and n.subnet == subnet]

    def validate_prerequisites(self, ue_id: str) -> ValidationResult:
        ue = self.store.get(ue_id)
        if ue is None or ue.kind != "UE":
            return ValidationResult(False, "UE not found")

        if not ue.config.subscriber_imsi:
            return ValidationResult(False, "UE is not registered (no IMSI configured)")

        subnet = ue.subnet

        amfs = self._stable_in_subnet("AMF", subnet)
        if not amfs:
            return ValidationResult(False, "No stable AMF found in same subnet")
        amf = next((a for a in amfs if self.reachability.are_connected(ue.uid, a.uid)), None)
        if amf is None:
            return ValidationResult(False, "UE is not connected to AMF (directly or via gNB)")

        smfs = self._stable_in_subnet("SMF", subnet)
        if not smfs:
            return ValidationResult(False, "No stable SMF found in same subnet")

        upfs = self._stable_in_subnet("UPF", subnet)
        if not upfs:
            return ValidationResult(False, "No stable UPF found in same subnet")
        upf = next((u for u in upfs if u.config.tun0 is not None), None)
        if upf is None:
            return ValidationResult(False, "UPF does not have tun0 interface configured")

        return ValidationResult(True, None, {"ue": ue, "amf": amf, "smf": smfs[0], "upf": upf})

    # ───────────────────────────── Establishment ─────────────────────────────

    async def establish(self, ue_id: str) -> bool:
        session = self.get_session(ue_id)

        if session.state == ACTIVE:
            self.log.add(ue_id, "WARNING", "PDU session already active")
            return True

        if session.state in (ESTABLISHING, RELEASING):
            self.log.add(ue_id, "WARNING", f"PDU session {session.state.lower()} already in progress")
            return False

        validation = self.validate_prerequisites(ue_id)
        if not validation.valid:
            self.log.add(ue_id, "ERROR", f"PDU session establishment failed: {validation.error}")
            return False

        nfs = validation.nfs
        ctx = FlowContext(ue=nfs["ue"], amf=nfs["amf"], smf=nfs["smf"], upf=nfs["upf"], session=session)

        session.state = ESTABLISHING
        session.session_id = self.allocator.new_session_id()
        session.messages = []
        self._notify("stateChange", ue_id=ue_id, state=session.state)

        try:
            await self._run_flow(ESTABLISHMENT_FLOW, ctx)
            self._commit(ctx)
        except StaleFlowError as e:
            session.reset(IDLE)
            self.log.add(ue_id, "WARNING", f"PDU session establishment abandoned: {e}")
            return False
        except Exception as e:
            self._rollback(ctx)
            session.reset(IDLE)
            self._notify("stateChange", ue_id=ue_id, state=session.state)
            self.log.add(ue_id, "ERROR", f"PDU session establishment failed: {e}")
            return False

        session.state = ACTIVE
        session.created_at = time.time()
        self._notify("stateChange", ue_id=ue_id, state=session.state)
        self.log.add(ue_id, "SUCCESS", "PDU session ACTIVE", {
            "sessionId": session.session_id,
            "assignedIP": session.assigned_ip,
            "tunnelId": session.tunnel_id,
            "upf": ctx.upf.name,
        })
        return True

    def _allocate(self, ctx: FlowContext) -> None:
        session = ctx.session
        pool = self.allocator.pool_for(ctx.upf.uid)
        if pool is None:
            raise SessionError(f"{ctx.upf.name} lost its tun0 interface")
        session.upf_id = ctx.upf.uid
        session.assigned_ip = self.allocator.allocate(pool, ctx.ue.uid, ctx.ue.name, owner=ctx.upf.uid)
        session.tunnel_id = self.allocator.new_tunnel_id()
        session.teid = self.allocator.new_teid()

    def _commit(self, ctx: FlowContext) -> None:
        session = ctx.session
        pool = self.allocator.pool_for(ctx.upf.uid)
        gateway = pool.gateway_ip if pool is not None else self.config.pool_gateway

        m = re.search(r"\d+", ctx.ue.name)
        ue_num = m.group(0) if m else "1"

        self.store.update_config(
            ctx.ue.uid,
            pdu_session=PDUSessionRecord(
                session_id=session.session_id,
                upf_id=ctx.upf.uid,
                assigned_ip=session.assigned_ip,
            ),
            pdu_session_state=ACTIVE,
            tun_interface=TunnelInterface(
                name=f"tun_ue{ue_num}",
                ip=session.assigned_ip,
                destination=session.assigned_ip,
                gateway=gateway,
            ),
        )

    def _rollback(self, ctx: FlowContext) -> None:
        # Give back an address handed out earlier in the failed attempt.
        session = ctx.session
        if session.upf_id and session.assigned_ip:
            freed = self.allocator.release(self.allocator.pool_for(session.upf_id), ctx.ue.uid)
            if freed:
                self.log.add(session.upf_id, "WARNING", f"Rolled back UE address {freed}", {"ueId": ctx.ue.uid})

    # ───────────────────────────── Release ─────────────────────────────

    async def release(self, ue_id: str) -> bool:
        session = self.get_session(ue_id)

        if session.state != ACTIVE:
            self.log.add(ue_id, "WARNING", "No active PDU session to release")
            return False

        if self.store.get(ue_id) is None:
            self.cleanup(ue_id)
            return False

        validation = self.validate_prerequisites(ue_id)
        if not validation.valid:
            self.log.add(ue_id, "WARNING", f"Releasing PDU session locally: {validation.error}")
            self.cleanup(ue_id)
            return True

        nfs = dict(validation.nfs)
        owner = self.store.get(session.upf_id) if session.upf_id else None
        if owner is not None:
            nfs["upf"] = owner
        ctx = FlowContext(ue=nfs["ue"], amf=nfs["amf"], smf=nfs["smf"], upf=nfs["upf"], session=session)

        session.state = RELEASING
        self._notify("stateChange", ue_id=ue_id, state=session.state)

        try:
            await self._run_flow(RELEASE_FLOW, ctx)
        except StaleFlowError as e:
            session.reset(RELEASED)
            self.log.add(ue_id, "WARNING", f"PDU session release abandoned: {e}")
            return False
        except Exception as e:
            self.log.add(ue_id, "ERROR", f"PDU session release failed: {e}")
            self.cleanup(ue_id)
            return False

        self.cleanup(ue_id)
        return True

    def cleanup(self, ue_id: str) -> None:
        """Free the UE address, clear the UE session config, force RELEASED."""
        session = self.get_session(ue_id)

        if session.upf_id:
            self.allocator.release(self.allocator.pool_for(session.upf_id), ue_id)

        if self.store.get(ue_id) is not None:
            self.store.update_config(ue_id, pdu_session=None, tun_interface=None, pdu_session_state=RELEASED)

        session.reset(RELEASED)
        self._notify("stateChange", ue_id=ue_id, state=session.state)
        self.log.add(ue_id, "SUCCESS", "PDU session RELEASED")

    # ───────────────────────────── Message flow ─────────────────────────────

    async def _run_flow(self, flow: List[Step], ctx: FlowContext) -> None:
        generation = self._generation
        for step in flow:
            if step.allocates:
                self._allocate(ctx)
            await self._send(step, ctx, generation)

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise StaleFlowError("topology was reset")

    async def _send(self, step: Step, ctx: FlowContext, generation: int) -> None:
        src = ctx.node(step.source)
        dst = ctx.node(step.target)

        # Raises if either end was deleted while the flow was suspended.
        path = self.planner.compute_path(src.uid, dst.uid)

        message_id = self.generate_message_id()
        payload = step.build(ctx)
        details: Dict[str, Any] = {"messageId": message_id, "interface": step.interface}
        if step.method:
            details["method"] = step.method
        if step.protocol:
            details["protocol"] = step.protocol
        details["direction"] = step.direction
        details["json"] = payload
        self.log.add(src.uid, step.level, step.description, details)
        ctx.session.messages.append(message_id)
        self._check_generation(generation)

        await self.scheduler.transmit(
            src.uid,
            dst.uid,
            path,
            interface=step.interface,
            direction=step.direction,
            payload=payload,
            message_id=message_id,
            method=step.method,
            protocol=step.protocol or "HTTP/2",
        )
        self._check_generation(generation)
        await self._sleep(self.config.scaled(step.settle_sec))
        self._check_generation(generation)

    # ───────────────────────────── Listeners ─────────────────────────────

    def subscribe(self, callback: SessionListener) -> None:
        self._listeners.append(callback)

    def _notify(self, event: str, **data: Any) -> None:
        for cb in list(self._listeners):
            try:
                cb(event, data)
            except Exception as e:
                self.log.add(data.get("ue_id", "system"), "ERROR", f"Session listener error: {e}")
