from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationInvalidError, InterfaceInvalidError, NotFoundError
from ..models import ContractArtifact


def link_bytecode(artifact: ContractArtifact, libraries: Optional[Dict[str, str]] = None) -> str:
    """Return the artifact bytecode with every linked library placeholder filled in.

    `libraries` maps a library name (or "sourceFile:LibraryName") to its address.
    Offsets in linkReferences count bytes of the bytecode without its 0x prefix.
    """
    libs = dict(libraries or {})
    code = artifact.bytecode[2:] if artifact.bytecode.startswith("0x") else artifact.bytecode
    for source, by_name in (artifact.link_references or {}).items():
        for lib_name, refs in by_name.items():
            address = libs.get(f"{source}:{lib_name}") or libs.get(lib_name)
            if not address:
                raise ConfigurationInvalidError(
                    f"missing library address: contract={artifact.contract_name!r} library={lib_name!r}"
                )
            addr_hex = address.lower().replace("0x", "").rjust(40, "0")
            for ref in refs:
                start = int(ref["start"]) * 2
                length = int(ref["length"]) * 2
                code = code[:start] + addr_hex[:length] + code[start + length:]
    return "0x" + code


class HardhatArtifactStore:
    """Reads compiled Hardhat artifacts (<root>/**/<Name>.sol/<Name>.json) by contract name."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._cache: Dict[str, ContractArtifact] = {}

    def _find(self, contract_name: str) -> Path:
        matches = [
            p
            for p in sorted(self.root.rglob(f"{contract_name}.json"))
            if not p.name.endswith(".dbg.json") and "build-info" not in p.parts
        ]
        if not matches:
            raise NotFoundError(f"artifact not found: contract={contract_name!r} root={self.root}")
        if len(matches) > 1:
            # Prefer the canonical <Name>.sol/<Name>.json location.
            canonical = [p for p in matches if p.parent.name == f"{contract_name}.sol"]
            if len(canonical) == 1:
                return canonical[0]
            raise ConfigurationInvalidError(
                f"ambiguous artifact name: contract={contract_name!r} candidates={[str(p) for p in matches]}"
            )
        return matches[0]

    def get_artifact(self, contract_name: str) -> ContractArtifact:
        if contract_name in self._cache:
            return self._cache[contract_name]
        path = self._find(contract_name)
        try:
            data: Dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise InterfaceInvalidError(f"artifact is not valid JSON: {path}: {e}") from e
        abi = data.get("abi")
        if not isinstance(abi, list):
            raise InterfaceInvalidError(f"artifact has no abi list: {path}")
        artifact = ContractArtifact(
            contract_name=str(data.get("contractName") or contract_name),
            abi=abi,
            bytecode=str(data.get("bytecode") or "0x"),
            source_name=str(data.get("sourceName") or ""),
            link_references=dict(data.get("linkReferences") or {}),
        )
        self._cache[contract_name] = artifact
        return artifact

    def get_interface(self, contract_name: str) -> List[Dict[str, Any]]:
        return list(self.get_artifact(contract_name).abi)

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "root": str(self.root)}
