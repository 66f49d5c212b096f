from __future__ import annotations

from .approval_http import HttpApprovalService
from .artifacts_hardhat import HardhatArtifactStore, link_bytecode
from .chain_web3 import Web3ChainClient
from .state_json import JsonDeployedStateStore
from .steps_json import JsonStepRegistry

__all__ = [
    "HttpApprovalService",
    "HardhatArtifactStore",
    "link_bytecode",
    "Web3ChainClient",
    "JsonDeployedStateStore",
    "JsonStepRegistry",
]
