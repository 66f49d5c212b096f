from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

# Facet versions are numeric keys in the configuration document ("0", "1", "1.5").
Version = Union[int, float]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# The facet installed by the diamond constructor; it owns diamondCut itself.
DIAMOND_CUT_FACET = "DiamondCutFacet"

# Canonical cut action classification. Codes are the IDiamondCut.FacetCutAction values.
CutAction = Literal["Add", "Replace", "Remove"]
CUT_ACTION_VALUES: Tuple[str, ...] = ("Add", "Replace", "Remove")
CUT_ACTION_CODES: Dict[str, int] = {"Add": 0, "Replace": 1, "Remove": 2}

StepStatus = Literal["pending", "approved", "executed", "failed"]
STEP_STATUS_VALUES: Tuple[str, ...] = ("pending", "approved", "executed", "failed")

ResolutionState = Literal["Undeployed", "UpToDate", "NeedsDeploy", "NeedsUpgrade", "VersionConflict"]
RESOLUTION_STATE_VALUES: Tuple[str, ...] = ("Undeployed", "UpToDate", "NeedsDeploy", "NeedsUpgrade", "VersionConflict")


def is_valid_step_status(value: Any) -> bool:
    return str(value or "").strip() in STEP_STATUS_VALUES


def parse_version(value: Any) -> Version:
    """Parse a version key ("1", 1, "1.5") into an int when integral, else a float."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid version: {value!r}")
    if isinstance(value, int):
        return value
    f = float(str(value).strip())
    if f != f or f in (float("inf"), float("-inf")):
        raise ValueError(f"Invalid version: {value!r}")
    return int(f) if f.is_integer() else f


def format_version(version: Version) -> str:
    return str(version)


# ---------------------------------------------------------------------------
# Deployed state (observed, mutated only after a confirmed on-chain change)
# ---------------------------------------------------------------------------


@dataclass
class DeployedFacet:
    address: str = ""
    tx_hash: str = ""
    version: Optional[Version] = None
    selectors: List[str] = field(default_factory=list)
    verified: bool = False


@dataclass
class PendingPostCut:
    """Work still owed to a facet whose cut is confirmed: its initializer, then its callbacks."""

    version: Version
    initializer: str = ""
    callbacks: Tuple[str, ...] = ()
    initialized: bool = False


@dataclass
class DeployedState:
    """On-chain-observed record of one diamond on one network."""

    diamond_address: str = ""
    deployer_address: str = ""
    facets: Dict[str, DeployedFacet] = field(default_factory=dict)
    external_libraries: Dict[str, str] = field(default_factory=dict)
    protocol_version: Optional[Version] = None
    # Cleared once the facet's initializer and callbacks have run.
    pending_post_cut: Dict[str, PendingPostCut] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Desired configuration (immutable for a run)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FacetVersionConfig:
    version: Version
    deploy_init: str = ""
    upgrade_init: str = ""
    # None means "reachable from any lower version".
    from_versions: Optional[Tuple[Version, ...]] = None
    callbacks: Tuple[str, ...] = ()
    deploy_include: Tuple[str, ...] = ()
    deploy_exclude: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FacetConfig:
    name: str
    # None sorts last (stable by name).
    priority: Optional[float] = None
    libraries: Tuple[str, ...] = ()
    versions: Dict[Version, FacetVersionConfig] = field(default_factory=dict)


@dataclass(frozen=True)
class DesiredConfiguration:
    protocol_version: Version
    facets: Dict[str, FacetConfig] = field(default_factory=dict)
    protocol_init_facet: str = ""
    protocol_callback: str = ""
    # When set, any facet version conflict halts the whole run.
    lockstep: bool = False
    source_path: str = ""


# ---------------------------------------------------------------------------
# Resolution and planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FacetResolution:
    facet_name: str
    state: ResolutionState
    deployed_version: Optional[Version] = None
    target_version: Optional[Version] = None
    # Set for NeedsUpgrade: the version being upgraded from.
    from_version: Optional[Version] = None
    initializer: str = ""
    callbacks: Tuple[str, ...] = ()
    note: str = ""

    @property
    def needs_cut(self) -> bool:
        return self.state in ("NeedsDeploy", "NeedsUpgrade")


@dataclass(frozen=True)
class CutOperation:
    """One entry of a diamond cut. Remove operations carry no facet address."""

    action: CutAction
    facet_name: str
    facet_address: Optional[str]
    selectors: Tuple[str, ...]


@dataclass(frozen=True)
class NewFacetDeployment:
    """A facet contract deployed during this run and not yet wired by a cut."""

    facet_name: str
    address: str
    tx_hash: str
    version: Version


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractArtifact:
    contract_name: str
    abi: List[Dict[str, Any]] = field(default_factory=list)
    bytecode: str = ""
    source_name: str = ""
    # {sourceFile: {libraryName: [{"start": int, "length": int}, ...]}}
    link_references: Dict[str, Dict[str, List[Dict[str, int]]]] = field(default_factory=dict)


@dataclass(frozen=True)
class ChainReceipt:
    tx_hash: str
    address: str = ""
    block_number: int = 0


@dataclass(frozen=True)
class ProposalState:
    """Normalized status of an approval-service proposal."""

    proposal_id: str
    status: StepStatus
    tx_hash: str = ""
    address: str = ""
    error: str = ""


@dataclass(frozen=True)
class StepRecord:
    """Persisted status of one delegated step, unique by step_name per deployment id."""

    step_name: str
    status: StepStatus
    proposal_id: str = ""
    tx_hash: str = ""
    address: str = ""
    description: str = ""
    # Milliseconds since the epoch.
    timestamp: int = 0
