from __future__ import annotations

from typing import Any, List, Optional, Sequence


class DiamondsError(Exception):
    """Base class for deployment orchestration errors.

    The orchestrator annotates errors that halt a run with where the run stopped:
      - phase: the phase that raised
      - last_successful_phase: the last phase that completed ("" if none)
      - deployment_id: the (diamond, network, chain) key of the run
      - steps: StepRecords known to the active strategy at the time of failure
    """

    phase: str = ""
    last_successful_phase: str = ""
    deployment_id: str = ""
    steps: Sequence[Any] = ()

    def annotate(self, *, phase: str, last_successful_phase: str, deployment_id: str, steps: Optional[List[Any]] = None) -> None:
        self.phase = phase
        self.last_successful_phase = last_successful_phase
        self.deployment_id = deployment_id
        self.steps = list(steps or [])


class ConfigurationInvalidError(DiamondsError):
    """Raised when the desired configuration or runtime profile is malformed."""


class InterfaceInvalidError(DiamondsError):
    """Raised when a facet interface description cannot be parsed."""


class VersionConflictError(DiamondsError):
    """Raised when a deployed facet version has no reachable declared version."""

    def __init__(self, message: str, *, facets: Optional[List[str]] = None):
        super().__init__(message)
        self.facets = list(facets or [])


class SelectorCollisionError(DiamondsError):
    """Raised when two facets (or two operations) claim the same selector."""

    def __init__(self, message: str, *, selector: str = "", facets: Optional[List[str]] = None):
        super().__init__(message)
        self.selector = selector
        self.facets = list(facets or [])


class CallbackError(DiamondsError):
    """Base class for post-cut callback failures. Never rolls back a confirmed cut."""

    def __init__(self, message: str, *, facet_name: str = "", callback_name: str = ""):
        super().__init__(message)
        self.facet_name = facet_name
        self.callback_name = callback_name


class CallbackNotFoundError(CallbackError):
    """Raised when a callback is declared in configuration but not registered."""


class CallbackExecutionError(CallbackError):
    """Raised when a registered callback raises."""


class ApprovalTimeoutError(DiamondsError):
    """Raised when approval polling exceeds its attempt budget. The step stays resumable."""

    def __init__(self, message: str, *, step_name: str = "", proposal_id: str = ""):
        super().__init__(message)
        self.step_name = step_name
        self.proposal_id = proposal_id


class ChainOperationError(DiamondsError):
    """Raised when the chain/signing or approval collaborator reports a failure."""


class NotFoundError(DiamondsError):
    """Raised when a requested entity cannot be found."""


class RetryableError(DiamondsError):
    """Raised when an operation may succeed if retried."""


class NotConfiguredError(DiamondsError):
    """Raised when a requested adapter is declared but not wired for the current runtime."""
