from __future__ import annotations

import importlib.util
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..infra.errors import (
    CallbackError,
    CallbackExecutionError,
    CallbackNotFoundError,
    ConfigurationInvalidError,
)
from ..infra.models import DeployedState, DesiredConfiguration, Version

CALLBACK_PREFIX = "callback"


@dataclass(frozen=True)
class CallbackArgs:
    """What a post-cut callback receives. `state` is the deployed state after the cut."""

    diamond_name: str
    network: str
    chain_id: int
    deployment_id: str
    facet_name: str = ""
    version: Optional[Version] = None
    state: Optional[DeployedState] = None
    chain: Any = None
    verbose: bool = False


@dataclass(frozen=True)
class RemediationItem:
    facet_name: str
    callback_name: str
    kind: str  # not_found|failed
    message: str


Callback = Callable[[CallbackArgs], Any]


class CallbackRegistry:
    """Explicit facet name -> {callback name: function} registry. Validated on registration."""

    def __init__(self) -> None:
        self._callbacks: Dict[str, Dict[str, Callback]] = {}

    def register(self, facet_name: str, callbacks: Mapping[str, Callback]) -> None:
        facet = str(facet_name or "").strip()
        if not facet:
            raise ConfigurationInvalidError("callback facet name is empty")
        if not isinstance(callbacks, Mapping):
            raise ConfigurationInvalidError(f"callbacks for {facet!r} must be a mapping of name to function")
        current = self._callbacks.setdefault(facet, {})
        for name, fn in callbacks.items():
            if not isinstance(name, str) or not name.strip():
                raise ConfigurationInvalidError(f"invalid callback name for {facet!r}: {name!r}")
            if not callable(fn):
                raise ConfigurationInvalidError(f"callback {facet}.{name} is not callable")
            if name in current and current[name] is not fn:
                raise ConfigurationInvalidError(f"callback {facet}.{name} is already registered")
            current[name] = fn

    def get(self, facet_name: str, callback_name: str) -> Callback:
        if facet_name not in self._callbacks:
            raise CallbackNotFoundError(
                f"No callbacks found for facet {facet_name!r}",
                facet_name=facet_name,
                callback_name=callback_name,
            )
        fn = self._callbacks[facet_name].get(callback_name)
        if fn is None:
            raise CallbackNotFoundError(
                f"Callback not found: {facet_name}.{callback_name}",
                facet_name=facet_name,
                callback_name=callback_name,
            )
        return fn

    def names(self, facet_name: str) -> List[str]:
        return sorted(self._callbacks.get(facet_name, {}))

    def missing(
        self,
        config: DesiredConfiguration,
        facets: Optional[Iterable[str]] = None,
        *,
        diamond_name: str = "",
    ) -> List[Tuple[str, str]]:
        """(facet, callback) pairs declared in configuration but not registered."""
        wanted = list(config.facets) if facets is None else list(facets)
        out: List[Tuple[str, str]] = []
        for facet in wanted:
            fc = config.facets.get(facet)
            if fc is None:
                continue
            for vc in fc.versions.values():
                for name in vc.callbacks:
                    if name not in self._callbacks.get(facet, {}) and (facet, name) not in out:
                        out.append((facet, name))
        if config.protocol_callback and diamond_name:
            if config.protocol_callback not in self._callbacks.get(diamond_name, {}):
                out.append((diamond_name, config.protocol_callback))
        return out

    def clear(self) -> None:
        self._callbacks.clear()


def load_callback_modules(path: Path) -> Dict[str, Dict[str, Callback]]:
    """Import every <Facet>.py in a directory and collect its callback* functions.

    Nothing is registered; the caller passes the result to CallbackRegistry.register.
    """
    root = Path(path)
    if not root.is_dir():
        raise ConfigurationInvalidError(f"callbacks directory not found: {root}")

    out: Dict[str, Dict[str, Callback]] = {}
    for file in sorted(root.glob("*.py")):
        if file.name.startswith("_"):
            continue
        spec = importlib.util.spec_from_file_location(f"diamonds_callbacks_{file.stem}", file)
        if spec is None or spec.loader is None:
            raise ConfigurationInvalidError(f"failed to load callback module: {file}")
        mod = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(mod)
        except Exception as e:
            raise ConfigurationInvalidError(f"failed to import callback module {file}: {e}") from e
        fns = {
            name: fn
            for name, fn in vars(mod).items()
            if name.startswith(CALLBACK_PREFIX) and callable(fn) and getattr(fn, "__module__", None) == mod.__name__
        }
        if fns:
            out[file.stem] = fns
    return out


class CallbackDispatcher:
    def __init__(self, registry: CallbackRegistry, *, verbose: bool = False) -> None:
        self.registry = registry
        self.verbose = verbose

    def _invoke(self, args: CallbackArgs, name: str) -> Optional[RemediationItem]:
        facet = args.facet_name
        try:
            fn = self.registry.get(facet, name)
            if self.verbose:
                print(f"[callbacks] facet={facet} callback={name} status=started")
            try:
                fn(args)
            except Exception as e:
                raise CallbackExecutionError(
                    f"callback {facet}.{name} failed: {e}", facet_name=facet, callback_name=name
                ) from e
        except CallbackError as e:
            kind = "not_found" if isinstance(e, CallbackNotFoundError) else "failed"
            print(f"[callbacks][FAILED] facet={facet} callback={name} reason={kind} error={e}")
            return RemediationItem(facet_name=facet, callback_name=name, kind=kind, message=str(e))
        if self.verbose:
            print(f"[callbacks] facet={facet} callback={name} status=completed")
        return None

    def run(
        self,
        base: CallbackArgs,
        order: Sequence[Tuple[str, Optional[Version], Sequence[str]]],
        *,
        protocol_callback: str = "",
    ) -> List[RemediationItem]:
        """Invoke callbacks facet by facet in the given order, each facet's in declared order.

        Failures never propagate: a confirmed cut is not rolled back, so every
        failure becomes a remediation item for the operator.
        """
        remediation: List[RemediationItem] = []
        for facet, version, names in order:
            for name in names:
                item = self._invoke(replace(base, facet_name=facet, version=version), name)
                if item is not None:
                    remediation.append(item)

        if protocol_callback:
            item = self._invoke(replace(base, facet_name=base.diamond_name, version=None), protocol_callback)
            if item is not None:
                remediation.append(item)
        return remediation
