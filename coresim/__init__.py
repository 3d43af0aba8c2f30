"""Deterministic 5G core session simulator.

The engine is stdlib-only apart from pydantic (snapshot schema) and is built
for unit testing: every component takes its collaborators explicitly.
"""

from .config import EngineConfig
from .core import CoreSim
from .deploy import TopologySnapshot, core_lab_snapshot, deploy, validate_snapshot
from .session_log import EventLog
from .sessions import SessionOrchestrator, ValidationResult
from .topology import TopologyError, TopologyStore

__all__ = [
    "CoreSim",
    "EngineConfig",
    "EventLog",
    "SessionOrchestrator",
    "TopologyError",
    "TopologySnapshot",
    "TopologyStore",
    "ValidationResult",
    "core_lab_snapshot",
    "deploy",
    "validate_snapshot",
]
