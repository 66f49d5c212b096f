from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from .models import (
    ChainReceipt,
    ContractArtifact,
    DeployedState,
    ProposalState,
    StepRecord,
    StepStatus,
)


class ChainClient(Protocol):
    """Signer plus RPC. Every call blocks until the transaction is confirmed."""

    def signer_address(self) -> str:
        raise NotImplementedError

    def deploy(
        self,
        artifact: ContractArtifact,
        args: Optional[List[Any]] = None,
        libraries: Optional[Dict[str, str]] = None,
    ) -> ChainReceipt:
        raise NotImplementedError

    def send(self, to: str, data: str) -> ChainReceipt:
        raise NotImplementedError

    def facets(self, diamond_address: str) -> Dict[str, str]:
        """Current selector -> facet address mapping read through the diamond loupe."""
        raise NotImplementedError


class ApprovalService(Protocol):
    def create_proposal(self, payload: Dict[str, Any]) -> str:
        raise NotImplementedError

    def get_proposal(self, proposal_id: str) -> ProposalState:
        raise NotImplementedError

    def execute_proposal(self, proposal_id: str) -> None:
        raise NotImplementedError

    def find_proposals(self, title: str) -> List[ProposalState]:
        """Proposals created with this title, oldest first."""
        raise NotImplementedError


class ArtifactStore(Protocol):
    def get_interface(self, contract_name: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def get_artifact(self, contract_name: str) -> ContractArtifact:
        raise NotImplementedError


class DeployedStateStore(Protocol):
    def load(self) -> DeployedState:
        raise NotImplementedError

    def save(self, state: DeployedState) -> None:
        raise NotImplementedError


class StepRegistry(Protocol):
    def get_step(self, step_name: str) -> Optional[StepRecord]:
        raise NotImplementedError

    def save_step(self, record: StepRecord) -> None:
        raise NotImplementedError

    def update_status(
        self,
        step_name: str,
        status: StepStatus,
        *,
        proposal_id: Optional[str] = None,
        tx_hash: Optional[str] = None,
        address: Optional[str] = None,
    ) -> StepRecord:
        raise NotImplementedError

    def list_steps(self) -> List[StepRecord]:
        raise NotImplementedError
