from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .config import load_deploy_config, resolve_deploy_config_path
from .infra.config import RuntimeProfile, load_runtime_profile
from .infra.errors import ApprovalTimeoutError, DiamondsError
from .infra.factory import InfraBundle, build_infra, build_strategy, profile_deployment_id
from .infra.models import DesiredConfiguration
from .orchestration.callbacks import CallbackRegistry, load_callback_modules
from .orchestration.orchestrator import DeploymentOrchestrator, RunResult
from .orchestration.registry import DeploymentRegistry
from .orchestration.status_reducer import reduce_deployment_status
from .orchestration.strategies import RunContext
from .planning.drift import compare_facet_selectors, has_drift


def _project_root(args: argparse.Namespace) -> Path:
    return Path(args.project_root).expanduser().resolve()


def _load(args: argparse.Namespace) -> Tuple[RuntimeProfile, InfraBundle]:
    root = _project_root(args)
    profile = load_runtime_profile(root, args.runtime_profile)
    return profile, build_infra(root, profile)


def _load_config(args: argparse.Namespace, profile: RuntimeProfile) -> DesiredConfiguration:
    root = _project_root(args)
    deployments = Path(profile.diamond.deployments_path)
    if not deployments.is_absolute():
        deployments = root / deployments
    cli_path = args.config or (str(root / profile.diamond.config_path) if profile.diamond.config_path else None)
    path = resolve_deploy_config_path(diamond_name=profile.diamond.name, deployments_path=deployments, cli_path=cli_path)
    return load_deploy_config(path)


def _callbacks(args: argparse.Namespace, profile: RuntimeProfile) -> CallbackRegistry:
    registry = CallbackRegistry()
    raw = args.callbacks_dir or profile.diamond.callbacks_path
    if not raw:
        return registry
    path = Path(raw)
    if not path.is_absolute():
        path = _project_root(args) / path
    for facet, fns in load_callback_modules(path).items():
        registry.register(facet, fns)
    return registry


def _orchestrator(args: argparse.Namespace, *, for_plan: bool = False) -> DeploymentOrchestrator:
    profile, infra = _load(args)
    config = _load_config(args, profile)
    strategy = None if for_plan else build_strategy(infra)
    owner = profile.diamond.owner
    if not for_plan and not owner and profile.strategy.kind == "direct":
        owner = infra.chain.signer_address()
    return DeploymentOrchestrator(
        diamond_name=profile.diamond.name,
        network=profile.diamond.network,
        chain_id=profile.diamond.chain_id,
        config=config,
        state_store=infra.state_store,
        artifacts=infra.artifacts,
        strategy=strategy,
        callbacks=None if for_plan else _callbacks(args, profile),
        signer_address=owner,
        verbose=bool(args.verbose),
        verify_chain=infra.read_chain() if getattr(args, "verify", False) else None,
        registry=DeploymentRegistry(),
    )


def _result_json(result: RunResult) -> Dict[str, Any]:
    return {
        "deployment_id": result.deployment_id,
        "mode": result.mode,
        "status": result.status,
        "phases_completed": result.phases_completed,
        "operations": [asdict(op) for op in result.operations],
        "conflicts": [{"facet": r.facet_name, "deployed_version": r.deployed_version, "note": r.note} for r in result.conflicts],
        "remediation": [asdict(item) for item in result.remediation],
        "diamond_address": result.state.diamond_address,
        "protocol_version": result.state.protocol_version,
        "drift": result.drift,
    }


def _error_json(e: DiamondsError) -> Dict[str, Any]:
    return {
        "status": "AWAITING_APPROVAL" if isinstance(e, ApprovalTimeoutError) else "FAILED",
        "error": e.__class__.__name__,
        "message": str(e),
        "phase": e.phase,
        "last_successful_phase": e.last_successful_phase,
        "deployment_id": e.deployment_id,
        "steps": [asdict(s) for s in e.steps],
    }


def _run_mode(args: argparse.Namespace, mode: str) -> int:
    try:
        orch = _orchestrator(args)
        result = orch.deploy() if mode == "deploy" else orch.upgrade()
    except ApprovalTimeoutError as e:
        print(json.dumps(_error_json(e), indent=2))
        return 3
    except DiamondsError as e:
        print(json.dumps(_error_json(e), indent=2))
        return 1
    print(json.dumps(_result_json(result), indent=2))
    return 2 if result.remediation else 0


def cmd_deploy(args: argparse.Namespace) -> int:
    return _run_mode(args, "deploy")


def cmd_upgrade(args: argparse.Namespace) -> int:
    return _run_mode(args, "upgrade")


def cmd_plan(args: argparse.Namespace) -> int:
    try:
        result = _orchestrator(args, for_plan=True).plan()
    except DiamondsError as e:
        print(json.dumps(_error_json(e), indent=2))
        return 1
    print(json.dumps(_result_json(result), indent=2))
    return 0


def cmd_steps(args: argparse.Namespace) -> int:
    profile, infra = _load(args)
    ctx = RunContext(
        deployment_id=profile_deployment_id(profile),
        diamond_name=profile.diamond.name,
        network=profile.diamond.network,
        chain_id=profile.diamond.chain_id,
    )
    records = infra.step_registry_factory(ctx).list_steps()
    print(
        json.dumps(
            {
                "deployment_id": ctx.deployment_id,
                "status": reduce_deployment_status(r.status for r in records),
                "steps": [asdict(r) for r in records],
            },
            indent=2,
        )
    )
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    profile, infra = _load(args)
    state = infra.state_store.load()
    if not state.diamond_address:
        print(json.dumps({"deployment_id": profile_deployment_id(profile), "error": "no diamond recorded"}))
        return 1
    report = compare_facet_selectors(state, infra.read_chain().facets(state.diamond_address))
    print(json.dumps({"deployment_id": profile_deployment_id(profile), "drift": has_drift(report), "facets": report}, indent=2))
    return 4 if has_drift(report) else 0


def cmd_describe(args: argparse.Namespace) -> int:
    _, infra = _load(args)
    print(json.dumps(infra.describe(), indent=2))
    return 0


def _common(sp: argparse.ArgumentParser, *, config: bool = True, callbacks: bool = False) -> None:
    sp.add_argument("--project-root", default=".")
    sp.add_argument("--runtime-profile", default=None, help="Runtime profile YAML (env: DIAMONDS_RUNTIME_PROFILE)")
    sp.add_argument("--verbose", action="store_true")
    if config:
        sp.add_argument("--config", default=None, help="Deploy configuration document (env: DIAMONDS_CONFIG)")
    if callbacks:
        sp.add_argument("--callbacks-dir", default=None)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="diamonds")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("deploy", help="Deploy the diamond (if needed) and cut in every configured facet")
    _common(sp, callbacks=True)
    sp.add_argument("--verify", action="store_true", help="Compare the chain's loupe with the deployed state after the cut")
    sp.set_defaults(func=cmd_deploy)

    sp = sub.add_parser("upgrade", help="Upgrade the facets of an existing diamond")
    _common(sp, callbacks=True)
    sp.add_argument("--verify", action="store_true", help="Compare the chain's loupe with the deployed state after the cut")
    sp.set_defaults(func=cmd_upgrade)

    sp = sub.add_parser("plan", help="Print the cut an upgrade would perform, without touching the chain")
    _common(sp)
    sp.set_defaults(func=cmd_plan)

    sp = sub.add_parser("steps", help="Print recorded delegated steps and the reduced deployment status")
    _common(sp, config=False)
    sp.set_defaults(func=cmd_steps)

    sp = sub.add_parser("diff", help="Compare the deployed state with the chain's selector map")
    _common(sp, config=False)
    sp.set_defaults(func=cmd_diff)

    sp = sub.add_parser("describe", help="Print the resolved runtime profile and adapters")
    _common(sp, config=False)
    sp.set_defaults(func=cmd_describe)

    return p


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args) or 0)


if __name__ == "__main__":
    raise SystemExit(main())
