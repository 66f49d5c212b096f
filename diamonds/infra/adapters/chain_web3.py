from __future__ import annotations

from typing import Any, Dict, List, Optional

from web3 import Web3

from ..errors import ChainOperationError, NotConfiguredError, RetryableError
from ..models import ChainReceipt, ContractArtifact
from .artifacts_hardhat import link_bytecode


DIAMOND_LOUPE_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "facets",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {
                "name": "facets_",
                "type": "tuple[]",
                "components": [
                    {"name": "facetAddress", "type": "address"},
                    {"name": "functionSelectors", "type": "bytes4[]"},
                ],
            }
        ],
    }
]


def _selector_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    s = str(value).lower()
    return s if s.startswith("0x") else "0x" + s


class Web3ChainClient:
    """Signs locally with one private key and waits for every receipt.

    Without a private key the client is read-only: only facets() works.
    """

    def __init__(self, rpc_url: str, private_key: str = "", *, receipt_timeout_s: int = 300) -> None:
        if not rpc_url:
            raise ChainOperationError("rpc url is empty")
        self.rpc_url = rpc_url
        self.w3 = Web3(Web3.HTTPProvider(rpc_url))
        self.account = self.w3.eth.account.from_key(private_key) if private_key else None
        self.receipt_timeout_s = int(receipt_timeout_s)

    def signer_address(self) -> str:
        if self.account is None:
            raise NotConfiguredError("chain client is read-only: no private key configured")
        return self.account.address

    def _base_tx(self) -> Dict[str, Any]:
        self.signer_address()
        return {
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address),
            "gasPrice": self.w3.eth.gas_price,
            "chainId": self.w3.eth.chain_id,
        }

    def _sign_and_wait(self, tx: Dict[str, Any]) -> Any:
        if "gas" not in tx:
            tx["gas"] = self.w3.eth.estimate_gas(tx)
        signed = self.w3.eth.account.sign_transaction(tx, self.account.key)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout_s)
        if int(receipt.get("status", 0)) != 1:
            raise ChainOperationError(f"transaction reverted: tx_hash={Web3.to_hex(tx_hash)}")
        return receipt

    def deploy(
        self,
        artifact: ContractArtifact,
        args: Optional[List[Any]] = None,
        libraries: Optional[Dict[str, str]] = None,
    ) -> ChainReceipt:
        bytecode = link_bytecode(artifact, libraries)
        contract = self.w3.eth.contract(abi=artifact.abi, bytecode=bytecode)
        try:
            tx = contract.constructor(*(args or [])).build_transaction(self._base_tx())
            receipt = self._sign_and_wait(tx)
        except ChainOperationError:
            raise
        except Exception as e:
            raise ChainOperationError(f"deploy failed: contract={artifact.contract_name!r}: {e}") from e
        return ChainReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            address=str(receipt.get("contractAddress") or ""),
            block_number=int(receipt.get("blockNumber") or 0),
        )

    def send(self, to: str, data: str) -> ChainReceipt:
        tx = self._base_tx()
        tx["to"] = Web3.to_checksum_address(to)
        tx["data"] = data
        try:
            receipt = self._sign_and_wait(tx)
        except ChainOperationError:
            raise
        except Exception as e:
            raise ChainOperationError(f"transaction failed: to={to}: {e}") from e
        return ChainReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=int(receipt.get("blockNumber") or 0),
        )

    def facets(self, diamond_address: str) -> Dict[str, str]:
        loupe = self.w3.eth.contract(address=Web3.to_checksum_address(diamond_address), abi=DIAMOND_LOUPE_ABI)
        try:
            rows = loupe.functions.facets().call()
        except Exception as e:
            raise RetryableError(f"loupe facets() call failed: diamond={diamond_address}: {e}") from e
        out: Dict[str, str] = {}
        for facet_address, selectors in rows:
            for sel in selectors:
                out[_selector_hex(sel)] = str(facet_address)
        return out

    def describe(self) -> Dict[str, Any]:
        return {
            "class": self.__class__.__name__,
            "rpc_url": self.rpc_url,
            "signer": self.account.address if self.account is not None else "",
        }
