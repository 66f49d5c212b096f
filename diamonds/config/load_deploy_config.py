from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ..infra.errors import ConfigurationInvalidError
from ..infra.models import (
    DesiredConfiguration,
    FacetConfig,
    FacetVersionConfig,
    Version,
    parse_version,
)
from ..utils.yamlio import read_yaml
from .validate_deploy_config import validate_deploy_config


def resolve_deploy_config_path(
    *,
    diamond_name: str,
    deployments_path: Path,
    cli_path: Optional[str] = None,
) -> Path:
    """Resolve the deploy configuration document path.

    Precedence:
      1) CLI flag --config
      2) DIAMONDS_CONFIG
      3) <deployments_path>/<DiamondName>/<diamondname>.config.json
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get("DIAMONDS_CONFIG", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (Path(deployments_path) / diamond_name / f"{diamond_name.lower()}.config.json").resolve()


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _version_config(version: Version, raw: Dict[str, Any]) -> FacetVersionConfig:
    from_versions = raw.get("fromVersions")
    return FacetVersionConfig(
        version=version,
        deploy_init=str(raw.get("deployInit") or ""),
        upgrade_init=str(raw.get("upgradeInit") or ""),
        from_versions=None if from_versions is None else tuple(parse_version(v) for v in from_versions),
        callbacks=_str_tuple(raw.get("callbacks")),
        deploy_include=_str_tuple(raw.get("deployInclude")),
        deploy_exclude=_str_tuple(raw.get("deployExclude")),
    )


def parse_deploy_config(data: Any, *, source_path: str = "") -> DesiredConfiguration:
    """Validate a raw configuration document and build the immutable run configuration."""
    if not isinstance(data, dict):
        raise ConfigurationInvalidError(f"deploy config must be a mapping: {source_path or '<memory>'}")
    validate_deploy_config(data)

    facets: Dict[str, FacetConfig] = {}
    for name, raw in (data.get("facets") or {}).items():
        raw = raw or {}
        versions: Dict[Version, FacetVersionConfig] = {}
        for key, vraw in (raw.get("versions") or {}).items():
            v = parse_version(key)
            versions[v] = _version_config(v, vraw or {})
        priority = raw.get("priority")
        facets[str(name)] = FacetConfig(
            name=str(name),
            priority=None if priority is None else float(priority),
            libraries=_str_tuple(raw.get("libraries")),
            versions=dict(sorted(versions.items())),
        )

    return DesiredConfiguration(
        protocol_version=parse_version(data["protocolVersion"]),
        facets=facets,
        protocol_init_facet=str(data.get("protocolInitFacet") or ""),
        protocol_callback=str(data.get("protocolCallback") or ""),
        lockstep=bool(data.get("lockstep", False)),
        source_path=source_path,
    )


def load_deploy_config(path: Path) -> DesiredConfiguration:
    """Load and validate a deploy configuration document (JSON or YAML).

    Raises:
        ConfigurationInvalidError: if the file is missing, unreadable or invalid.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigurationInvalidError(f"deploy config not found: {p}")
    try:
        data = read_yaml(p)
    except yaml.YAMLError as e:
        raise ConfigurationInvalidError(f"deploy config is not valid JSON/YAML: {p}: {e}") from e
    return parse_deploy_config(data, source_path=str(p))
