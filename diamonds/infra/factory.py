from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..orchestration.idempotency import deployment_id
from ..orchestration.polling import PollOptions
from ..orchestration.strategies import DelegatedStrategy, DirectStrategy, ExecutionStrategy, RunContext
from .adapters.approval_http import HttpApprovalService
from .adapters.artifacts_hardhat import HardhatArtifactStore
from .adapters.chain_web3 import Web3ChainClient
from .adapters.state_json import JsonDeployedStateStore
from .adapters.steps_json import JsonStepRegistry
from .config import AdapterSpec, RuntimeProfile
from .contracts import ApprovalService, ArtifactStore, ChainClient, DeployedStateStore, StepRegistry
from .errors import NotConfiguredError


def _env_secret(settings: Dict[str, Any], key: str, default_env: str, adapter: str) -> str:
    env_name = str(settings.get(key) or default_env).strip()
    value = str(os.environ.get(env_name, "") or "").strip()
    if not value:
        raise NotConfiguredError(f"{adapter} adapter needs environment variable {env_name} ({key})")
    return value


def _resolve(repo_root: Path, raw: str) -> Path:
    p = Path(raw).expanduser()
    return p if p.is_absolute() else (repo_root / p)


def diamond_dir(repo_root: Path, profile: RuntimeProfile) -> Path:
    return _resolve(repo_root, profile.diamond.deployments_path) / profile.diamond.name


def profile_deployment_id(profile: RuntimeProfile) -> str:
    return deployment_id(profile.diamond.name, profile.diamond.network, profile.diamond.chain_id)


@dataclass
class InfraBundle:
    profile: RuntimeProfile
    repo_root: Path
    artifacts: ArtifactStore
    state_store: DeployedStateStore
    step_registry_factory: Callable[[RunContext], StepRegistry]
    approval_service: Optional[ApprovalService] = None
    _chain: Optional[ChainClient] = None

    @property
    def chain(self) -> ChainClient:
        """The signer is only built when something needs it (plan and steps never do)."""
        if self._chain is None:
            self._chain = _build_chain(self.profile.adapters["chain"])
        return self._chain

    def read_chain(self) -> ChainClient:
        """A chain client for loupe reads; the private key is optional."""
        if self._chain is not None:
            return self._chain
        return _build_chain(self.profile.adapters["chain"], read_only=True)

    def describe(self) -> Dict[str, Any]:
        def _d(x: Any) -> Dict[str, Any]:
            if hasattr(x, "describe") and callable(getattr(x, "describe")):
                return dict(getattr(x, "describe")())
            return {"class": x.__class__.__name__}

        return {
            "profile_name": self.profile.profile_name,
            "deployment_id": profile_deployment_id(self.profile),
            "strategy": self.profile.strategy.kind,
            "adapters": {
                "chain": {"kind": self.profile.adapters["chain"].kind},
                "artifacts": _d(self.artifacts),
                "state_store": _d(self.state_store),
                "step_registry": {"kind": self.profile.adapters["step_registry"].kind},
                "approval_service": _d(self.approval_service)
                if self.approval_service is not None
                else {"class": "NotConfigured"},
            },
        }


def _build_chain(spec: AdapterSpec, *, read_only: bool = False) -> ChainClient:
    if spec.kind == "web3":
        key_env = str(spec.settings.get("private_key_env") or "PRIVATE_KEY").strip()
        return Web3ChainClient(
            _env_secret(spec.settings, "rpc_url_env", "RPC_URL", "chain"),
            str(os.environ.get(key_env, "") or "").strip()
            if read_only
            else _env_secret(spec.settings, "private_key_env", "PRIVATE_KEY", "chain"),
            receipt_timeout_s=int(spec.settings.get("receipt_timeout_s", 300)),
        )
    raise NotConfiguredError(f"unsupported chain kind: {spec.kind!r}")


def build_infra(repo_root: Path, profile: RuntimeProfile) -> InfraBundle:
    repo_root = Path(repo_root)
    base = diamond_dir(repo_root, profile)
    dep_id = profile_deployment_id(profile)

    a = profile.adapters["artifacts"]
    if a.kind != "hardhat":
        raise NotConfiguredError(f"unsupported artifacts kind: {a.kind!r}")
    artifacts = HardhatArtifactStore(_resolve(repo_root, str(a.settings.get("root") or "artifacts")))

    s = profile.adapters["state_store"]
    if s.kind != "json_file":
        raise NotConfiguredError(f"unsupported state_store kind: {s.kind!r}")
    state_path = s.settings.get("path")
    state_store = JsonDeployedStateStore(
        _resolve(repo_root, str(state_path)) if state_path else base / "deployments" / f"{dep_id}.json"
    )

    r = profile.adapters["step_registry"]
    if r.kind != "json_file":
        raise NotConfiguredError(f"unsupported step_registry kind: {r.kind!r}")
    steps_dir = _resolve(repo_root, str(r.settings["dir"])) if r.settings.get("dir") else base / "deployments" / "steps"

    def step_registry_factory(ctx: RunContext) -> StepRegistry:
        return JsonStepRegistry(
            steps_dir / f"{ctx.deployment_id}.json",
            diamond_name=ctx.diamond_name,
            network=ctx.network,
            deployment_id=ctx.deployment_id,
        )

    approval: Optional[ApprovalService] = None
    spec = profile.adapters.get("approval_service")
    if spec is not None:
        if spec.kind != "http":
            raise NotConfiguredError(f"unsupported approval_service kind: {spec.kind!r}")
        api_key_env = str(spec.settings.get("api_key_env") or "").strip()
        approval = HttpApprovalService(
            str(spec.settings.get("base_url") or ""),
            str(os.environ.get(api_key_env, "") or "") if api_key_env else "",
            timeout_s=int(spec.settings.get("timeout_s", 30)),
        )

    return InfraBundle(
        profile=profile,
        repo_root=repo_root,
        artifacts=artifacts,
        state_store=state_store,
        step_registry_factory=step_registry_factory,
        approval_service=approval,
    )


def build_strategy(infra: InfraBundle) -> ExecutionStrategy:
    spec = infra.profile.strategy
    if spec.kind == "direct":
        return DirectStrategy(infra.chain)
    if spec.kind == "delegated":
        if infra.approval_service is None:
            raise NotConfiguredError("delegated strategy requires an approval_service adapter")
        return DelegatedStrategy(
            infra.approval_service,
            infra.step_registry_factory,
            poll=PollOptions(
                max_attempts=spec.poll.max_attempts,
                initial_delay_s=spec.poll.initial_delay_s,
                max_delay_s=spec.poll.max_delay_s,
                jitter=spec.poll.jitter,
            ),
            auto_execute=spec.auto_execute,
        )
    raise NotConfiguredError(f"unsupported strategy kind: {spec.kind!r}")
