from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import os


# ─────────────────────────────────────────────────────────────────────────────
# Defaults
# ─────────────────────────────────────────────────────────────────────────────

# Scheduler runs at roughly display refresh rate.
TICK_INTERVAL_SEC = 1.0 / 60.0

# Segment progress per second (0.012 per frame at 60 fps).
TOKEN_SPEED_PER_SEC = 0.72

# Multiplier applied to every settling delay and to node start-up time.
DELAY_SCALE = 1.0

# Radio-unit hops a UE may bridge through when reaching a core NF.
REACHABILITY_DEPTH = 1

# A freshly started NF reports "stable" after this many seconds.
NODE_STARTUP_SEC = 5.0

MAX_EVENTS = 5000

# UPF tun0 pool (demo range)
POOL_NETWORK = "10.0.0.0/28"
POOL_GATEWAY = "10.0.0.1"
POOL_FIRST_HOST = 2
POOL_LAST_HOST = 14
POOL_FALLBACK = "10.0.0.2"

# Projections closer than this along the bus axis skip the slide waypoint.
BUS_SLIDE_THRESHOLD_PX = 10.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class EngineConfig:
    tick_interval_sec: float = TICK_INTERVAL_SEC
    token_speed: float = TOKEN_SPEED_PER_SEC
    delay_scale: float = DELAY_SCALE
    reachability_depth: int = REACHABILITY_DEPTH
    node_startup_sec: float = NODE_STARTUP_SEC
    max_events: int = MAX_EVENTS

    pool_network: str = POOL_NETWORK
    pool_gateway: str = POOL_GATEWAY
    pool_first_host: int = POOL_FIRST_HOST
    pool_last_host: int = POOL_LAST_HOST
    pool_fallback: str = POOL_FALLBACK

    bus_slide_threshold_px: float = BUS_SLIDE_THRESHOLD_PX

    # Seed for session ids / tunnel ids; None = nondeterministic.
    seed: Optional[int] = None

    # Scheduler drives itself on the running asyncio loop.
    autorun: bool = True

    @staticmethod
    def from_env(**overrides) -> "EngineConfig":
        """Build a config from CORESIM_* environment variables.

        Keyword overrides win over the environment.
        """
        cfg = EngineConfig(
            tick_interval_sec=_env_float("CORESIM_TICK_INTERVAL", TICK_INTERVAL_SEC),
            token_speed=_env_float("CORESIM_TOKEN_SPEED", TOKEN_SPEED_PER_SEC),
            delay_scale=_env_float("CORESIM_DELAY_SCALE", DELAY_SCALE),
            reachability_depth=int(_env_int("CORESIM_REACH_DEPTH", REACHABILITY_DEPTH) or REACHABILITY_DEPTH),
            node_startup_sec=_env_float("CORESIM_STARTUP_SEC", NODE_STARTUP_SEC),
            max_events=int(_env_int("CORESIM_MAX_EVENTS", MAX_EVENTS) or MAX_EVENTS),
            seed=_env_int("CORESIM_SEED", None),
        )
        for k, v in overrides.items():
            if not hasattr(cfg, k):
                raise TypeError(f"Unknown config field: {k}")
            setattr(cfg, k, v)
        return cfg

    def scaled(self, seconds: float) -> float:
        return max(0.0, seconds * self.delay_scale)
