from __future__ import annotations

from .models import (
    ChainReceipt,
    ContractArtifact,
    CutOperation,
    DeployedFacet,
    DeployedState,
    DesiredConfiguration,
    FacetConfig,
    FacetResolution,
    FacetVersionConfig,
    ProposalState,
    StepRecord,
)

from .errors import (
    DiamondsError,
    ConfigurationInvalidError,
    InterfaceInvalidError,
    VersionConflictError,
    SelectorCollisionError,
    CallbackError,
    CallbackNotFoundError,
    CallbackExecutionError,
    ApprovalTimeoutError,
    ChainOperationError,
    NotFoundError,
    RetryableError,
    NotConfiguredError,
)

__all__ = [
    "ChainReceipt",
    "ContractArtifact",
    "CutOperation",
    "DeployedFacet",
    "DeployedState",
    "DesiredConfiguration",
    "FacetConfig",
    "FacetResolution",
    "FacetVersionConfig",
    "ProposalState",
    "StepRecord",
    "DiamondsError",
    "ConfigurationInvalidError",
    "InterfaceInvalidError",
    "VersionConflictError",
    "SelectorCollisionError",
    "CallbackError",
    "CallbackNotFoundError",
    "CallbackExecutionError",
    "ApprovalTimeoutError",
    "ChainOperationError",
    "NotFoundError",
    "RetryableError",
    "NotConfiguredError",
]
