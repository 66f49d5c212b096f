from __future__ import annotations

from pathlib import Path

import pytest

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from diamonds.infra.config import load_runtime_profile, resolve_runtime_profile_path  # noqa: E402
from diamonds.infra.errors import ConfigurationInvalidError  # noqa: E402

SINGLE = """profile_name: local_direct
diamond:
  name: ExampleDiamond
  network: localhost
  chain_id: 31337
  deployments_path: diamonds
strategy:
  kind: direct
adapters:
  chain: {kind: web3}
  artifacts: {kind: hardhat, settings: {root: artifacts}}
  state_store: {kind: json_file}
  step_registry: {kind: json_file}
"""

MULTI = """default_profile: local_direct
profiles:
  local_direct:
    diamond: {name: ExampleDiamond, network: localhost, chain_id: 31337, deployments_path: diamonds}
    strategy: {kind: direct}
    adapters:
      chain: {kind: web3}
      artifacts: {kind: hardhat}
      state_store: {kind: json_file}
      step_registry: {kind: json_file}
  sepolia_delegated:
    diamond:
      name: ExampleDiamond
      network: sepolia
      chain_id: 11155111
      deployments_path: diamonds
      owner: "0x000000000000000000000000000000000000dEaD"
    strategy:
      kind: delegated
      settings:
        auto_execute: true
        poll: {max_attempts: 5, initial_delay_s: 1, max_delay_s: 4, jitter: false}
    adapters:
      chain: {kind: web3}
      artifacts: {kind: hardhat}
      state_store: {kind: json_file}
      step_registry: {kind: json_file}
      approval_service: {kind: http, settings: {base_url: "https://approvals.example.invalid"}}
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIAMONDS_RUNTIME_PROFILE", raising=False)
    monkeypatch.delenv("DIAMONDS_PROFILE_NAME", raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "config" / "runtime_profile.yml"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def test_single_profile_from_default_location(tmp_path: Path) -> None:
    _write(tmp_path, SINGLE)
    prof = load_runtime_profile(tmp_path)

    assert prof.profile_name == "local_direct"
    assert prof.diamond.name == "ExampleDiamond"
    assert prof.diamond.chain_id == 31337
    assert prof.strategy.kind == "direct"
    assert prof.strategy.poll.max_attempts == 30
    assert prof.adapters["artifacts"].settings == {"root": "artifacts"}
    assert "approval_service" not in prof.adapters


def test_multi_profile_selection(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, MULTI)

    assert load_runtime_profile(tmp_path).profile_name == "local_direct"

    monkeypatch.setenv("DIAMONDS_PROFILE_NAME", "sepolia_delegated")
    prof = load_runtime_profile(tmp_path, cli_path=str(path))
    assert prof.profile_name == "sepolia_delegated"
    assert prof.strategy.kind == "delegated"
    assert prof.strategy.auto_execute is True
    assert prof.strategy.poll.max_attempts == 5
    assert prof.strategy.poll.jitter is False
    assert prof.diamond.owner.endswith("dEaD")

    monkeypatch.setenv("DIAMONDS_PROFILE_NAME", "missing")
    with pytest.raises(ConfigurationInvalidError):
        load_runtime_profile(tmp_path)


def test_env_path_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    other = tmp_path / "elsewhere.yml"
    other.write_text(SINGLE, encoding="utf-8")
    monkeypatch.setenv("DIAMONDS_RUNTIME_PROFILE", str(other))
    assert resolve_runtime_profile_path(tmp_path) == other.resolve()
    assert load_runtime_profile(tmp_path).diamond.network == "localhost"


@pytest.mark.parametrize(
    "old,new",
    [
        ("chain: {kind: web3}", "chain: {kind: ethers}"),
        ("kind: direct", "kind: multisig"),
        ("  step_registry: {kind: json_file}\n", ""),
        ("kind: direct", "kind: delegated"),
        ("chain_id: 31337", "chain_id: mainnet"),
    ],
)
def test_invalid_profiles(tmp_path: Path, old: str, new: str) -> None:
    _write(tmp_path, SINGLE.replace(old, new))
    with pytest.raises(ConfigurationInvalidError):
        load_runtime_profile(tmp_path)


def test_poll_ceiling_below_initial_delay(tmp_path: Path) -> None:
    text = SINGLE.replace(
        "kind: direct", "kind: direct\n  settings: {poll: {initial_delay_s: 10, max_delay_s: 2}}"
    )
    _write(tmp_path, text)
    with pytest.raises(ConfigurationInvalidError):
        load_runtime_profile(tmp_path)


def test_missing_profile(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationInvalidError):
        load_runtime_profile(tmp_path)


def test_repository_profiles_load(monkeypatch: pytest.MonkeyPatch) -> None:
    repo_root = ensure_repo_on_path()
    assert load_runtime_profile(repo_root).profile_name == "local_direct"

    monkeypatch.setenv("DIAMONDS_PROFILE_NAME", "sepolia_delegated")
    prof = load_runtime_profile(repo_root)
    assert prof.strategy.kind == "delegated"
    assert prof.adapters["approval_service"].settings["api_key_env"] == "APPROVAL_API_KEY"
