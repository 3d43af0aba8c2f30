from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import asyncio
import math
import time

from .paths import Point


@dataclass
class MessageToken:
    """One protocol message in flight along a list of waypoints."""

    token_id: str
    source_id: str
    target_id: str
    path: List[Point]
    speed: float
    interface: str = ""
    direction: str = "request"  # request|response
    method: str = ""
    protocol: str = "HTTP/2"
    payload: Dict[str, Any] = field(default_factory=dict)
    message_id: Optional[str] = None

    segment: int = 0
    segment_progress: float = 0.0
    progress: float = 0.0
    x: float = 0.0
    y: float = 0.0
    done: bool = False
    created_at: float = field(default_factory=time.time)

    on_complete: Optional[Callable[["MessageToken"], None]] = field(default=None, repr=False)

    def advance(self, amount: float) -> bool:
        """Move ``amount`` segments forward; True once the last waypoint is reached."""
        last = len(self.path) - 2
        self.segment_progress += amount

        # Carry overflow into the following segments.
        while self.segment_progress >= 1.0 and self.segment < last:
            self.segment_progress -= 1.0
            self.segment += 1

        if self.segment >= last and self.segment_progress >= 1.0:
            self.segment_progress = 1.0
            end = self.path[-1]
            self.x, self.y = end.x, end.y
            self.progress = 1.0
            return True

        a = self.path[self.segment]
        b = self.path[self.segment + 1]
        t = self.segment_progress
        self.x = a.x + (b.x - a.x) * t
        self.y = a.y + (b.y - a.y) * t
        self.progress = (self.segment + t) / (len(self.path) - 1)
        return False


class AnimationScheduler:
    """Advances every live token once per tick.

    With ``autorun`` the scheduler drives itself on the running asyncio loop:
    the tick task starts on the first submit and exits as soon as no tokens
    are live. Without a loop (or with autorun off) the host calls ``tick``.
    """

    def __init__(self, tick_interval_sec: float = 1.0 / 60.0, default_speed: float = 0.72,
                 autorun: bool = True, log=None):
        self.tick_interval_sec = tick_interval_sec
        self.default_speed = default_speed
        self.autorun = autorun
        self.log = log

        self._tokens: List[MessageToken] = []
        self._counter = 0
        self._tick_job: Optional[asyncio.Task] = None

    # ───────────────────────────── Submission ─────────────────────────────

    def submit(
        self,
        source_id: str,
        target_id: str,
        path: List[Point],
        interface: str = "",
        direction: str = "request",
        payload: Optional[Dict[str, Any]] = None,
        message_id: Optional[str] = None,
        speed: Optional[float] = None,
        method: Optional[str] = None,
        protocol: str = "HTTP/2",
        on_complete: Optional[Callable[[MessageToken], None]] = None,
    ) -> MessageToken:
        if len(path) < 2:
            raise ValueError("A token path needs at least two waypoints")

        self._counter += 1
        token = MessageToken(
            token_id=f"pkt-{self._counter}",
            source_id=source_id,
            target_id=target_id,
            path=list(path),
            speed=self.default_speed if speed is None else float(speed),
            interface=interface,
            direction=direction,
            method=method or ("POST" if direction == "request" else "200 OK"),
            protocol=protocol,
            payload=dict(payload or {}),
            message_id=message_id,
            on_complete=on_complete,
        )
        token.x, token.y = path[0].x, path[0].y
        self._tokens.append(token)
        self._ensure_loop()
        return token

    async def transmit(self, source_id: str, target_id: str, path: List[Point], **kwargs: Any) -> MessageToken:
        """Submit a token and wait until it reaches its target."""
        loop = asyncio.get_running_loop()
        arrived: asyncio.Future = loop.create_future()

        def _done(tok: MessageToken) -> None:
            if not arrived.done():
                arrived.set_result(tok)

        self.submit(source_id, target_id, path, on_complete=_done, **kwargs)
        return await arrived

    # ───────────────────────────── Ticking ─────────────────────────────

    def tick(self, dt: Optional[float] = None) -> List[MessageToken]:
        dt = self.tick_interval_sec if dt is None else dt
        completed: List[MessageToken] = []
        for tok in list(self._tokens):
            if tok.advance(tok.speed * dt):
                completed.append(tok)

        for tok in completed:
            if tok in self._tokens:
                self._tokens.remove(tok)
            self._finish(tok)
        return completed

    def _finish(self, tok: MessageToken) -> None:
        tok.done = True
        cb, tok.on_complete = tok.on_complete, None
        if cb is None:
            return
        try:
            cb(tok)
        except Exception as e:
            if self.log is not None:
                self.log.add(tok.source_id, "ERROR", f"Completion handler for {tok.token_id} failed: {e}")

    def _ensure_loop(self) -> None:
        if not self.autorun:
            return
        if self._tick_job is not None and not self._tick_job.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._tick_job = loop.create_task(self._run())

    async def _run(self) -> None:
        while self._tokens:
            await asyncio.sleep(self.tick_interval_sec)
            self.tick(self.tick_interval_sec)

    def stop(self) -> None:
        if self._tick_job is not None and not self._tick_job.done():
            self._tick_job.cancel()
        self._tick_job = None

    # ───────────────────────────── Views ─────────────────────────────

    def tokens(self) -> List[MessageToken]:
        return list(self._tokens)

    def is_animating(self) -> bool:
        return bool(self._tokens)

    def token_at(self, x: float, y: float, radius: float = 15.0) -> Optional[MessageToken]:
        """Nearest live token within ``radius`` of (x, y), for hit-testing."""
        best, best_d = None, radius
        for tok in self._tokens:
            d = math.hypot(tok.x - x, tok.y - y)
            if d <= best_d:
                best, best_d = tok, d
        return best

    def is_ticking(self) -> bool:
        return self._tick_job is not None and not self._tick_job.done()

    def clear(self) -> None:
        """Drop every live token; each continuation still fires once."""
        doomed, self._tokens = self._tokens, []
        for tok in doomed:
            self._finish(tok)
