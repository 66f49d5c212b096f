from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema

from ..utils.yamlio import read_yaml
from .errors import ConfigurationInvalidError


# Adapter kind enums are strict. Any unknown kind is rejected.
ALLOWED_ADAPTER_KINDS: Dict[str, Tuple[str, ...]] = {
    "chain": ("web3",),
    "artifacts": ("hardhat",),
    "state_store": ("json_file",),
    "step_registry": ("json_file",),
    "approval_service": ("http",),
}

REQUIRED_ADAPTER_KEYS = (
    "chain",
    "artifacts",
    "state_store",
    "step_registry",
)

OPTIONAL_ADAPTER_KEYS = (
    "approval_service",
)

STRATEGY_KINDS: Tuple[str, ...] = ("direct", "delegated")


@dataclass(frozen=True)
class AdapterSpec:
    kind: str
    settings: Dict[str, Any]


@dataclass(frozen=True)
class DiamondTarget:
    name: str
    network: str
    chain_id: int
    deployments_path: str
    config_path: str = ""
    callbacks_path: str = ""
    # Diamond owner when the signer is not local (delegated strategy).
    owner: str = ""


@dataclass(frozen=True)
class PollSettings:
    max_attempts: int = 30
    initial_delay_s: float = 8.0
    max_delay_s: float = 60.0
    jitter: bool = True


@dataclass(frozen=True)
class StrategySpec:
    kind: str
    auto_execute: bool = False
    poll: PollSettings = field(default_factory=PollSettings)


@dataclass(frozen=True)
class RuntimeProfile:
    profile_name: str
    diamond: DiamondTarget
    strategy: StrategySpec
    adapters: Dict[str, AdapterSpec]


def resolve_runtime_profile_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """Resolve the runtime profile YAML path.

    Precedence:
      1) CLI flag --runtime-profile
      2) DIAMONDS_RUNTIME_PROFILE
      3) <repo_root>/config/runtime_profile.yml
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get("DIAMONDS_RUNTIME_PROFILE", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / "config" / "runtime_profile.yml").resolve()


def _adapter_schema_for_kind(allowed_kinds: Tuple[str, ...]) -> Dict[str, Any]:
    # Fresh dict per adapter key; the enum is attached per key.
    return {
        "type": "object",
        "required": ["kind"],
        "properties": {
            "kind": {"type": "string", "enum": list(allowed_kinds)},
            "settings": {"type": "object"},
        },
        "additionalProperties": False,
    }


def _profile_body_schema() -> Dict[str, Any]:
    all_keys = REQUIRED_ADAPTER_KEYS + OPTIONAL_ADAPTER_KEYS
    return {
        "type": "object",
        "required": ["diamond", "strategy", "adapters"],
        "properties": {
            "description": {"type": "string"},
            "diamond": {
                "type": "object",
                "required": ["name", "network", "chain_id", "deployments_path"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "network": {"type": "string", "minLength": 1},
                    "chain_id": {"type": "integer", "minimum": 0},
                    "deployments_path": {"type": "string", "minLength": 1},
                    "config_path": {"type": "string"},
                    "callbacks_path": {"type": "string"},
                    "owner": {"type": "string"},
                },
                "additionalProperties": False,
            },
            "strategy": {
                "type": "object",
                "required": ["kind"],
                "properties": {
                    "kind": {"type": "string", "enum": list(STRATEGY_KINDS)},
                    "settings": {
                        "type": "object",
                        "properties": {
                            "auto_execute": {"type": "boolean"},
                            "poll": {
                                "type": "object",
                                "properties": {
                                    "max_attempts": {"type": "integer", "minimum": 1},
                                    "initial_delay_s": {"type": "number", "minimum": 0},
                                    "max_delay_s": {"type": "number", "minimum": 0},
                                    "jitter": {"type": "boolean"},
                                },
                                "additionalProperties": False,
                            },
                        },
                        "additionalProperties": False,
                    },
                },
                "additionalProperties": False,
            },
            "adapters": {
                "type": "object",
                "required": list(REQUIRED_ADAPTER_KEYS),
                "properties": {k: _adapter_schema_for_kind(ALLOWED_ADAPTER_KINDS[k]) for k in all_keys},
                "additionalProperties": False,
            },
        },
        "additionalProperties": False,
    }


def _profile_schema_single() -> Dict[str, Any]:
    body = _profile_body_schema()
    body["required"] = ["profile_name"] + list(body["required"])
    body["properties"]["profile_name"] = {"type": "string", "minLength": 1}
    body["$schema"] = "https://json-schema.org/draft/2020-12/schema"
    return body


def _profile_schema_multi() -> Dict[str, Any]:
    """Schema for a multi-profile YAML file.

    Shape:
      default_profile: local_direct
      profiles:
        local_direct:
          diamond: { ... }
          strategy: { kind: direct }
          adapters: { ... }
        mainnet_delegated:
          ...
    """
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["profiles"],
        "properties": {
            "default_profile": {"type": "string"},
            "profiles": {
                "type": "object",
                "minProperties": 1,
                "additionalProperties": _profile_body_schema(),
            },
        },
        "additionalProperties": False,
    }


def _validate_dict(data: Any) -> None:
    if not isinstance(data, dict):
        raise ConfigurationInvalidError("runtime profile must be a mapping")
    schema = _profile_schema_multi() if "profiles" in data else _profile_schema_single()
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationInvalidError(f"runtime profile schema validation failed at {where}: {e.message}") from e


def _select_profile(data: Dict[str, Any], path: Path) -> Tuple[str, Dict[str, Any]]:
    if "profiles" not in data:
        return str(data.get("profile_name", "")).strip(), data

    profiles = data["profiles"]
    wanted = str(os.environ.get("DIAMONDS_PROFILE_NAME", "") or "").strip()
    default_profile = str(data.get("default_profile", "") or "").strip()

    if wanted:
        if wanted not in profiles:
            raise ConfigurationInvalidError(f"DIAMONDS_PROFILE_NAME={wanted!r} not found in profiles: {path}")
        return wanted, profiles[wanted]

    if default_profile:
        if default_profile not in profiles:
            raise ConfigurationInvalidError(f"default_profile={default_profile!r} not found in profiles: {path}")
        return default_profile, profiles[default_profile]

    # Deterministic fallback: first key by sorted name.
    first = sorted(profiles.keys())[0]
    return first, profiles[first]


def _parse_strategy(raw: Dict[str, Any]) -> StrategySpec:
    settings = raw.get("settings") or {}
    poll_raw = settings.get("poll") or {}
    defaults = PollSettings()
    poll = PollSettings(
        max_attempts=int(poll_raw.get("max_attempts", defaults.max_attempts)),
        initial_delay_s=float(poll_raw.get("initial_delay_s", defaults.initial_delay_s)),
        max_delay_s=float(poll_raw.get("max_delay_s", defaults.max_delay_s)),
        jitter=bool(poll_raw.get("jitter", defaults.jitter)),
    )
    if poll.max_delay_s < poll.initial_delay_s:
        raise ConfigurationInvalidError(
            f"strategy poll max_delay_s={poll.max_delay_s} is lower than initial_delay_s={poll.initial_delay_s}"
        )
    return StrategySpec(kind=str(raw["kind"]), auto_execute=bool(settings.get("auto_execute", False)), poll=poll)


def load_runtime_profile(repo_root: Path, cli_path: Optional[str] = None) -> RuntimeProfile:
    """Load and validate a runtime profile.

    Environment overrides:
      - DIAMONDS_RUNTIME_PROFILE (file path)
      - DIAMONDS_PROFILE_NAME (select profile when YAML contains multiple profiles)
    """
    path = resolve_runtime_profile_path(repo_root, cli_path)
    if not path.exists():
        raise ConfigurationInvalidError(f"runtime profile not found: {path}")

    data = read_yaml(path)
    _validate_dict(data)

    profile_name, body = _select_profile(data, path)

    # Allow overriding the displayed profile name of a single-profile file.
    name_override = str(os.environ.get("DIAMONDS_PROFILE_NAME", "") or "").strip()
    if name_override and "profiles" not in data:
        profile_name = name_override

    d = body["diamond"]
    diamond = DiamondTarget(
        name=str(d["name"]).strip(),
        network=str(d["network"]).strip(),
        chain_id=int(d["chain_id"]),
        deployments_path=str(d["deployments_path"]).strip(),
        config_path=str(d.get("config_path") or "").strip(),
        callbacks_path=str(d.get("callbacks_path") or "").strip(),
        owner=str(d.get("owner") or "").strip(),
    )

    strategy = _parse_strategy(body["strategy"])

    adapters: Dict[str, AdapterSpec] = {}
    for k, spec in body["adapters"].items():
        adapters[k] = AdapterSpec(kind=str(spec["kind"]).strip(), settings=dict(spec.get("settings") or {}))

    if strategy.kind == "delegated" and "approval_service" not in adapters:
        raise ConfigurationInvalidError(f"delegated strategy requires an approval_service adapter: {path}")

    return RuntimeProfile(profile_name=profile_name, diamond=diamond, strategy=strategy, adapters=adapters)
