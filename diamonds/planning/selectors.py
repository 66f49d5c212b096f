from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Sequence, Tuple, Union

from web3 import Web3

from ..infra.errors import InterfaceInvalidError


AbiEntry = Union[Dict[str, Any], str]

_SELECTOR_RE = re.compile(r"^0x[0-9a-fA-F]{8}$")
_ARRAY_SUFFIX_RE = re.compile(r"^(\[[0-9]*\])*")
_NAME_RE = re.compile(r"^[a-zA-Z_$][a-zA-Z0-9_$]*$")

# Human-readable ABI fragments that never expose a selector.
_NON_FUNCTION_KEYWORDS = ("event", "error", "constructor", "fallback", "receive", "struct")


def is_selector(value: str) -> bool:
    return bool(_SELECTOR_RE.match(str(value or "").strip()))


def _split_top_level(s: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    cur = ""
    for ch in s:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise InterfaceInvalidError(f"unbalanced parentheses in {s!r}")
        if ch == "," and depth == 0:
            parts.append(cur)
            cur = ""
            continue
        cur += ch
    if depth != 0:
        raise InterfaceInvalidError(f"unbalanced parentheses in {s!r}")
    if cur.strip() or parts:
        parts.append(cur)
    return [p.strip() for p in parts]


def _matching_paren(s: str, open_idx: int) -> int:
    depth = 0
    for i in range(open_idx, len(s)):
        if s[i] == "(":
            depth += 1
        elif s[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    raise InterfaceInvalidError(f"unbalanced parentheses in {s!r}")


def _normalize_base(base: str, raw: str) -> str:
    m = re.match(r"^([a-zA-Z_][a-zA-Z0-9_]*)((\[[0-9]*\])*)$", base)
    if not m:
        raise InterfaceInvalidError(f"invalid parameter type {raw!r}")
    name, arrays = m.group(1), m.group(2)
    if name in ("uint", "int"):
        name += "256"
    elif name in ("fixed", "ufixed"):
        name += "128x18"
    elif name == "byte":
        name = "bytes1"
    return name + arrays


def _canonical_param_type(param: str) -> str:
    """Canonical type of one human-readable parameter ("uint amount", "(address,uint)[] xs")."""
    p = param.strip()
    if not p:
        raise InterfaceInvalidError("empty parameter type")
    if p.startswith("tuple("):
        p = p[len("tuple"):]
    if p.startswith("("):
        close = _matching_paren(p, 0)
        inner = ",".join(_canonical_param_type(c) for c in _split_top_level(p[1:close]))
        arrays = _ARRAY_SUFFIX_RE.match(p[close + 1:].strip()).group(0)
        return f"({inner}){arrays}"
    return _normalize_base(p.split()[0], param)


def _canonical_abi_input(inp: Any) -> str:
    if not isinstance(inp, dict) or not isinstance(inp.get("type"), str):
        raise InterfaceInvalidError(f"invalid ABI input: {inp!r}")
    t = inp["type"].strip()
    if t.startswith("tuple"):
        components = inp.get("components")
        if not isinstance(components, list):
            raise InterfaceInvalidError(f"tuple input without components: {inp!r}")
        inner = ",".join(_canonical_abi_input(c) for c in components)
        arrays = t[len("tuple"):]
        if not _ARRAY_SUFFIX_RE.fullmatch(arrays):
            raise InterfaceInvalidError(f"invalid tuple type {t!r}")
        return f"({inner}){arrays}"
    return _normalize_base(t, t)


def _parse_signature_string(text: str) -> Tuple[str, List[str]]:
    s = text.strip()
    if s.startswith("function "):
        s = s[len("function "):].strip()
    open_idx = s.find("(")
    if open_idx <= 0:
        raise InterfaceInvalidError(f"invalid function signature {text!r}")
    name = s[:open_idx].strip()
    if not _NAME_RE.match(name):
        raise InterfaceInvalidError(f"invalid function name in {text!r}")
    close = _matching_paren(s, open_idx)
    params = _split_top_level(s[open_idx + 1:close])
    return name, [_canonical_param_type(p) for p in params]


def canonical_signature(entry: AbiEntry) -> str:
    """Canonical `name(type,...)` form of an ABI function entry or signature string."""
    if isinstance(entry, str):
        name, types = _parse_signature_string(entry)
        return f"{name}({','.join(types)})"
    if not isinstance(entry, dict):
        raise InterfaceInvalidError(f"invalid ABI entry: {entry!r}")
    if entry.get("type", "function") != "function":
        raise InterfaceInvalidError(f"not a function ABI entry: {entry.get('type')!r}")
    name = entry.get("name")
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise InterfaceInvalidError(f"function ABI entry without a valid name: {entry!r}")
    inputs = entry.get("inputs") or []
    if not isinstance(inputs, list):
        raise InterfaceInvalidError(f"function ABI inputs must be a list: {name!r}")
    return f"{name}({','.join(_canonical_abi_input(i) for i in inputs)})"


def function_selector(signature: str) -> str:
    """First four bytes of keccak-256 of the canonical signature, 0x-prefixed lowercase hex."""
    canonical = canonical_signature(signature)
    return "0x" + bytes(Web3.keccak(text=canonical)[:4]).hex()


def _is_function_entry(entry: AbiEntry) -> bool:
    if isinstance(entry, str):
        head = entry.strip().split("(", 1)[0].split()
        return not head or head[0] not in _NON_FUNCTION_KEYWORDS
    if isinstance(entry, dict):
        return entry.get("type", "function") == "function"
    raise InterfaceInvalidError(f"invalid ABI entry: {entry!r}")


def interface_selectors(abi: Sequence[AbiEntry]) -> Dict[str, str]:
    """Ordered {selector: signature} for every function of an interface description."""
    if not isinstance(abi, (list, tuple)):
        raise InterfaceInvalidError(f"interface must be a list of ABI entries, got {type(abi).__name__}")
    out: Dict[str, str] = {}
    for entry in abi:
        if not _is_function_entry(entry):
            continue
        sig = canonical_signature(entry)
        sel = function_selector(sig)
        if sel in out and out[sel] != sig:
            raise InterfaceInvalidError(f"selector clash {sel}: {out[sel]!r} and {sig!r}")
        out[sel] = sig
    return out


def _match(entry: str, functions: Dict[str, str]) -> List[str]:
    e = str(entry).strip()
    if is_selector(e):
        sel = e.lower()
        return [sel] if sel in functions else []
    if "(" in e:
        sel = function_selector(e)
        return [sel] if sel in functions else []
    return [sel for sel, sig in functions.items() if sig.split("(", 1)[0] == e]


def resolve_facet_selectors(
    abi: Sequence[AbiEntry],
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> Tuple[str, ...]:
    """Selectors a facet exposes after applying its include/exclude lists.

    Entries may be a selector, a full signature, or a bare function name (every
    overload). Entries naming functions absent from the interface are ignored.
    """
    functions = interface_selectors(abi)
    include = list(include or ())
    selected = set(functions)
    if include:
        selected = {sel for e in include for sel in _match(e, functions)}
    for e in exclude or ():
        selected.difference_update(_match(e, functions))
    return tuple(sorted(selected))
