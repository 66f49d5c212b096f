from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path


class TestJsonDeployedStateStore(unittest.TestCase):
    def test_missing_file_reads_as_empty_state(self) -> None:
        ensure_repo_on_path()

        from diamonds.infra.adapters.state_json import JsonDeployedStateStore

        with tempfile.TemporaryDirectory() as td:
            state = JsonDeployedStateStore(Path(td) / "deployments" / "examplediamond-localhost-31337.json").load()
            self.assertEqual(state.diamond_address, "")
            self.assertEqual(state.facets, {})
            self.assertIsNone(state.protocol_version)

    def test_document_keys_and_save(self) -> None:
        ensure_repo_on_path()

        from diamonds.infra.adapters.state_json import JsonDeployedStateStore
        from diamonds.infra.models import DeployedFacet

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "state.json"
            path.write_text(
                json.dumps(
                    {
                        "DiamondAddress": "0x" + "d" * 40,
                        "DeployerAddress": "0x" + "a" * 40,
                        "DeployedFacets": {
                            "ERC20Facet": {
                                "address": "0x" + "1" * 40,
                                "tx_hash": "0xabc",
                                "version": 1,
                                "funcSelectors": ["0xA9059CBB"],
                            }
                        },
                        "ExternalLibraries": {"MathLib": "0x" + "2" * 40},
                        "protocolVersion": 1.5,
                    }
                ),
                encoding="utf-8",
            )
            store = JsonDeployedStateStore(path)
            state = store.load()

            self.assertEqual(state.diamond_address, "0x" + "d" * 40)
            self.assertEqual(state.facets["ERC20Facet"].selectors, ["0xa9059cbb"])
            self.assertEqual(state.facets["ERC20Facet"].version, 1)
            self.assertFalse(state.facets["ERC20Facet"].verified)
            self.assertEqual(state.external_libraries["MathLib"], "0x" + "2" * 40)
            self.assertEqual(state.protocol_version, 1.5)

            state.facets["OwnershipFacet"] = DeployedFacet(address="0x" + "3" * 40, version=2, selectors=["0x8da5cb5b"])
            store.save(state)

            raw = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(sorted(raw["DeployedFacets"]), ["ERC20Facet", "OwnershipFacet"])
            self.assertEqual(raw["DeployedFacets"]["OwnershipFacet"]["funcSelectors"], ["0x8da5cb5b"])
            self.assertEqual(raw["protocolVersion"], 1.5)
            self.assertEqual([p.name for p in Path(td).iterdir()], ["state.json"])

    def test_pending_post_cut_survives_a_reload(self) -> None:
        ensure_repo_on_path()

        from diamonds.infra.adapters.state_json import JsonDeployedStateStore
        from diamonds.infra.models import DeployedState, PendingPostCut

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "state.json"
            store = JsonDeployedStateStore(path)
            store.save(DeployedState(diamond_address="0x" + "d" * 40))
            self.assertNotIn("PendingPostCut", json.loads(path.read_text(encoding="utf-8")))

            state = DeployedState(
                diamond_address="0x" + "d" * 40,
                pending_post_cut={
                    "OwnershipFacet": PendingPostCut(version=1, initializer="initOwnership"),
                    "ERC20Facet": PendingPostCut(version=2, callbacks=("callbackMint",), initialized=True),
                },
            )
            store.save(state)
            self.assertEqual(store.load(), state)

    def test_invalid_json(self) -> None:
        ensure_repo_on_path()

        from diamonds.infra.adapters.state_json import JsonDeployedStateStore
        from diamonds.infra.errors import ConfigurationInvalidError

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "state.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ConfigurationInvalidError):
                JsonDeployedStateStore(path).load()


if __name__ == "__main__":
    unittest.main()
