from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

import jsonschema

from ..infra.errors import ConfigurationInvalidError
from ..infra.models import parse_version


_VERSION_KEY_PATTERN = r"^[0-9]+(\.[0-9]+)?$"

_STRING_LIST = {"type": "array", "items": {"type": "string", "minLength": 1}}


def deploy_config_schema() -> Dict[str, Any]:
    version_obj = {
        "type": "object",
        "properties": {
            "deployInit": {"type": "string"},
            "upgradeInit": {"type": "string"},
            "fromVersions": {
                "type": "array",
                "items": {"anyOf": [{"type": "number"}, {"type": "string", "pattern": _VERSION_KEY_PATTERN}]},
            },
            "callbacks": {"anyOf": [{"type": "string", "minLength": 1}, _STRING_LIST]},
            "deployInclude": _STRING_LIST,
            "deployExclude": _STRING_LIST,
        },
        "additionalProperties": False,
    }

    facet_obj = {
        "type": "object",
        "properties": {
            "priority": {"type": "number"},
            "libraries": _STRING_LIST,
            "versions": {
                "type": "object",
                "patternProperties": {_VERSION_KEY_PATTERN: version_obj},
                "additionalProperties": False,
            },
        },
        "additionalProperties": False,
    }

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["protocolVersion", "facets"],
        "properties": {
            "protocolVersion": {"type": "number"},
            "protocolInitFacet": {"type": "string"},
            "protocolCallback": {"type": "string"},
            "lockstep": {"type": "boolean"},
            "facets": {"type": "object", "additionalProperties": facet_obj},
        },
        "additionalProperties": False,
    }


def _require_mapping(value: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ConfigurationInvalidError(f"Invalid {path}: expected mapping")
    return value


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _assert_unique(items: Iterable[str], path: str) -> None:
    seen = set()
    for it in items:
        if it in seen:
            raise ConfigurationInvalidError(f"Duplicate entry at {path}: {it!r}")
        seen.add(it)


def validate_deploy_config(cfg: Dict[str, Any]) -> None:
    """Validate a deploy configuration document.

    Shape is checked with jsonschema first; semantic rules that a schema cannot
    express are checked afterwards:
      - fromVersions entries are lower than the version declaring them
      - protocolInitFacet, when set, names a declared facet
      - libraries and callback names are unique per facet/version

    Raises:
        ConfigurationInvalidError: on the first violation found.
    """
    try:
        jsonschema.validate(instance=cfg, schema=deploy_config_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationInvalidError(f"deploy config schema validation failed at {where}: {e.message}") from e

    facets = _require_mapping(cfg.get("facets"), "facets")
    for facet_name, facet in facets.items():
        facet = _require_mapping(facet, f"facets.{facet_name}")
        _assert_unique(facet.get("libraries") or [], f"facets.{facet_name}.libraries")

        versions = _require_mapping(facet.get("versions") or {}, f"facets.{facet_name}.versions")
        parsed_keys = {}
        for key in versions.keys():
            v = parse_version(key)
            if v in parsed_keys:
                raise ConfigurationInvalidError(
                    f"Duplicate version at facets.{facet_name}.versions: {parsed_keys[v]!r} and {key!r}"
                )
            parsed_keys[v] = key

        for key, vcfg in versions.items():
            path = f"facets.{facet_name}.versions.{key}"
            this_version = parse_version(key)
            for raw in _as_list(vcfg.get("fromVersions")):
                src = parse_version(raw)
                if src >= this_version:
                    raise ConfigurationInvalidError(
                        f"Invalid {path}.fromVersions: {raw!r} is not lower than {key!r}"
                    )
            _assert_unique(_as_list(vcfg.get("callbacks")), f"{path}.callbacks")

    init_facet = str(cfg.get("protocolInitFacet") or "").strip()
    if init_facet and init_facet not in facets:
        raise ConfigurationInvalidError(f"Invalid protocolInitFacet: {init_facet!r} is not a declared facet")
