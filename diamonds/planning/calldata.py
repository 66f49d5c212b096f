from __future__ import annotations

from typing import Iterable, Mapping, Tuple

from eth_abi import encode

from ..infra.errors import ConfigurationInvalidError
from ..infra.models import CUT_ACTION_CODES, ZERO_ADDRESS, CutOperation, DesiredConfiguration, FacetResolution
from .selectors import function_selector


DIAMOND_CUT_SIGNATURE = "diamondCut((address,uint8,bytes4[])[],address,bytes)"
DIAMOND_CUT_ARG_TYPES = ["(address,uint8,bytes4[])[]", "address", "bytes"]


def _hex_bytes(value: str) -> bytes:
    v = str(value or "")
    v = v[2:] if v.startswith("0x") else v
    try:
        return bytes.fromhex(v)
    except ValueError as e:
        raise ConfigurationInvalidError(f"invalid hex data: {value!r}") from e


def encode_diamond_cut(
    operations: Iterable[CutOperation],
    init_address: str = ZERO_ADDRESS,
    init_calldata: str = "0x",
) -> str:
    """Calldata for IDiamondCut.diamondCut carrying the whole plan as one atomic cut."""
    cuts = []
    for op in operations:
        if op.action == "Remove":
            address = ZERO_ADDRESS
        elif op.facet_address:
            address = op.facet_address
        else:
            raise ConfigurationInvalidError(f"{op.action} operation for {op.facet_name!r} has no facet address")
        cuts.append((address.lower(), CUT_ACTION_CODES[op.action], [_hex_bytes(s) for s in op.selectors]))

    args = encode(DIAMOND_CUT_ARG_TYPES, [cuts, (init_address or ZERO_ADDRESS).lower(), _hex_bytes(init_calldata)])
    return function_selector(DIAMOND_CUT_SIGNATURE) + args.hex()


def initializer_calldata(signature: str) -> str:
    """Calldata for a no-argument initializer; a bare name gets an empty parameter list."""
    sig = str(signature or "").strip()
    if not sig:
        return "0x"
    if "(" not in sig:
        sig += "()"
    return function_selector(sig)


def protocol_initializer(
    config: DesiredConfiguration,
    resolutions: Mapping[str, FacetResolution],
    facet_addresses: Mapping[str, str],
) -> Tuple[str, str]:
    """(init address, init calldata) passed with the cut, or the zero address and empty data."""
    facet_name = config.protocol_init_facet
    if not facet_name:
        return ZERO_ADDRESS, "0x"
    resolution = resolutions.get(facet_name)
    if resolution is None or not resolution.needs_cut or not resolution.initializer:
        return ZERO_ADDRESS, "0x"
    address = facet_addresses.get(facet_name, "")
    if not address:
        raise ConfigurationInvalidError(f"protocol init facet {facet_name!r} has no address")
    return address, initializer_calldata(resolution.initializer)
