from __future__ import annotations

from pathlib import Path

import pytest

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from diamonds.infra.config import load_runtime_profile  # noqa: E402
from diamonds.infra.errors import NotConfiguredError  # noqa: E402
from diamonds.infra.factory import build_infra, build_strategy  # noqa: E402
from diamonds.orchestration.strategies import DelegatedStrategy, DirectStrategy, RunContext  # noqa: E402

PROFILE = """profile_name: {name}
diamond:
  name: ExampleDiamond
  network: sepolia
  chain_id: 11155111
  deployments_path: diamonds
strategy:
  kind: {strategy}
  settings: {{auto_execute: true, poll: {{max_attempts: 4, initial_delay_s: 1, max_delay_s: 2}}}}
adapters:
  chain: {{kind: web3, settings: {{rpc_url_env: TEST_RPC_URL, private_key_env: TEST_PRIVATE_KEY}}}}
  artifacts: {{kind: hardhat}}
  state_store: {{kind: json_file}}
  step_registry: {{kind: json_file}}
  approval_service: {{kind: http, settings: {{base_url: "https://approvals.example.invalid", api_key_env: TEST_APPROVAL_KEY}}}}
"""


def _profile(tmp_path: Path, strategy: str):
    p = tmp_path / "runtime_profile.yml"
    p.write_text(PROFILE.format(name=f"sepolia_{strategy}", strategy=strategy), encoding="utf-8")
    return load_runtime_profile(tmp_path, cli_path=str(p))


def test_build_infra_describe(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_APPROVAL_KEY", "k")
    bundle = build_infra(tmp_path, _profile(tmp_path, "delegated"))
    desc = bundle.describe()

    assert desc["profile_name"] == "sepolia_delegated"
    assert desc["deployment_id"] == "examplediamond-sepolia-11155111"
    assert desc["strategy"] == "delegated"
    assert desc["adapters"]["artifacts"]["root"] == str(tmp_path / "artifacts")
    assert desc["adapters"]["state_store"]["path"] == str(
        tmp_path / "diamonds" / "ExampleDiamond" / "deployments" / "examplediamond-sepolia-11155111.json"
    )
    assert desc["adapters"]["approval_service"]["class"] == "HttpApprovalService"

    ctx = RunContext(
        deployment_id="examplediamond-sepolia-11155111", diamond_name="ExampleDiamond", network="sepolia", chain_id=11155111
    )
    registry = bundle.step_registry_factory(ctx)
    assert registry.path == tmp_path / "diamonds" / "ExampleDiamond" / "deployments" / "steps" / "examplediamond-sepolia-11155111.json"

    strategy = build_strategy(bundle)
    assert isinstance(strategy, DelegatedStrategy)
    assert strategy.auto_execute is True
    assert strategy.poll.max_attempts == 4


def test_direct_strategy_needs_chain_secrets(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TEST_RPC_URL", raising=False)
    monkeypatch.delenv("TEST_PRIVATE_KEY", raising=False)
    bundle = build_infra(tmp_path, _profile(tmp_path, "direct"))
    with pytest.raises(NotConfiguredError):
        build_strategy(bundle)

    monkeypatch.setenv("TEST_RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.setenv("TEST_PRIVATE_KEY", "0x" + "11" * 32)
    strategy = build_strategy(build_infra(tmp_path, _profile(tmp_path, "direct")))
    assert isinstance(strategy, DirectStrategy)
    assert strategy.chain.signer_address().startswith("0x")


def test_read_chain_without_private_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.delenv("TEST_PRIVATE_KEY", raising=False)
    chain = build_infra(tmp_path, _profile(tmp_path, "direct")).read_chain()
    with pytest.raises(NotConfiguredError):
        chain.signer_address()
