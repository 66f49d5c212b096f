"""Deploy configuration document loading.

The deploy configuration declares the protocol version and the versioned facet
set of one diamond. It is read once per run and never mutated.
"""
from __future__ import annotations

from .load_deploy_config import load_deploy_config, parse_deploy_config, resolve_deploy_config_path
from .validate_deploy_config import deploy_config_schema, validate_deploy_config

__all__ = [
    "load_deploy_config",
    "parse_deploy_config",
    "resolve_deploy_config_path",
    "deploy_config_schema",
    "validate_deploy_config",
]
