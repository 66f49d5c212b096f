from __future__ import annotations

from .callbacks import CallbackArgs, CallbackDispatcher, CallbackRegistry, RemediationItem, load_callback_modules
from .orchestrator import DeploymentOrchestrator, RunResult, RunState
from .phases import DIAMOND_PHASES, PHASES, PhaseCursor, phases_for
from .polling import PollOptions, poll_until
from .registry import DeploymentRegistry
from .status_reducer import reduce_deployment_status
from .strategies import DelegatedStrategy, DirectStrategy, ExecutionStrategy, RunContext

__all__ = [
    "CallbackArgs",
    "CallbackDispatcher",
    "CallbackRegistry",
    "RemediationItem",
    "load_callback_modules",
    "DeploymentOrchestrator",
    "RunResult",
    "RunState",
    "DIAMOND_PHASES",
    "PHASES",
    "PhaseCursor",
    "phases_for",
    "PollOptions",
    "poll_until",
    "DeploymentRegistry",
    "reduce_deployment_status",
    "DelegatedStrategy",
    "DirectStrategy",
    "ExecutionStrategy",
    "RunContext",
]
