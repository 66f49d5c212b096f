from __future__ import annotations

import unittest

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from _fakes import (  # noqa: E402
    DIAMOND_NAME,
    ERC20_V2_ABI,
    SIGNER,
    FakeArtifacts,
    FakeChain,
    MemoryStateStore,
    example_config,
    load_config,
)
from diamonds.infra.errors import ChainOperationError, ConfigurationInvalidError, NotFoundError  # noqa: E402
from diamonds.orchestration.callbacks import CallbackRegistry  # noqa: E402
from diamonds.orchestration.orchestrator import DeploymentOrchestrator  # noqa: E402
from diamonds.orchestration.strategies import DirectStrategy  # noqa: E402
from diamonds.planning.calldata import initializer_calldata  # noqa: E402
from diamonds.planning.selectors import function_selector  # noqa: E402


def _orchestrator(config, store, chain, *, artifacts=None, callbacks=None, verify=False, signer=SIGNER):
    return DeploymentOrchestrator(
        diamond_name=DIAMOND_NAME,
        network="localhost",
        chain_id=31337,
        config=config,
        state_store=store,
        artifacts=artifacts or FakeArtifacts(),
        strategy=DirectStrategy(chain),
        callbacks=callbacks,
        signer_address=signer,
        verify_chain=chain if verify else None,
    )


class _RevertingInitChain(FakeChain):
    def __init__(self) -> None:
        super().__init__()
        self.revert_init = True

    def send(self, to: str, data: str):
        if self.revert_init and data == initializer_calldata("initOwnership"):
            raise RuntimeError("execution reverted")
        return super().send(to, data)


def _minted() -> CallbackRegistry:
    reg = CallbackRegistry()
    reg.register("ERC20Facet", {"callbackMint": lambda args: None})
    return reg


class TestDirectDeploy(unittest.TestCase):
    def test_fresh_deploy(self) -> None:
        chain = FakeChain()
        store = MemoryStateStore()
        calls = []
        callbacks = CallbackRegistry()
        callbacks.register("ERC20Facet", {"callbackMint": lambda args: calls.append((args.facet_name, args.version))})

        result = _orchestrator(load_config(), store, chain, callbacks=callbacks).deploy()

        self.assertEqual(result.status, "COMPLETED")
        self.assertEqual(result.deployment_id, "examplediamond-localhost-31337")
        self.assertEqual(len(result.phases_completed), 15)

        contracts = [d["contract"] for d in chain.deployed]
        self.assertEqual(contracts, ["DiamondCutFacet", DIAMOND_NAME, "OwnershipFacet", "ERC20Facet"])
        cut_facet, diamond = chain.deployed[0], chain.deployed[1]
        self.assertEqual(diamond["args"], [SIGNER, cut_facet["address"]])

        self.assertEqual([(op.action, op.facet_name) for op in result.operations], [("Add", "OwnershipFacet"), ("Add", "ERC20Facet")])

        # One atomic cut, then the facet initializer.
        self.assertEqual(len(chain.sent), 2)
        self.assertTrue(chain.sent[0]["data"].startswith("0x1f931c1c"))
        self.assertEqual(chain.sent[0]["to"], diamond["address"])
        self.assertEqual(chain.sent[1]["data"], initializer_calldata("initOwnership"))

        state = store.state
        self.assertEqual(state.diamond_address, diamond["address"])
        self.assertEqual(state.deployer_address, SIGNER)
        self.assertEqual(state.protocol_version, 1)
        self.assertEqual(state.facets["DiamondCutFacet"].selectors, ["0x1f931c1c"])
        self.assertEqual(state.facets["ERC20Facet"].version, 1)
        self.assertEqual(sorted(state.facets["ERC20Facet"].selectors), ["0x18160ddd", "0x70a08231", "0xa9059cbb"])
        self.assertEqual(state.facets["ERC20Facet"].address, chain.deployed[3]["address"])
        self.assertEqual(calls, [("ERC20Facet", 1)])

    def test_second_run_is_a_no_op(self) -> None:
        chain = FakeChain()
        store = MemoryStateStore()
        _orchestrator(load_config(), store, chain, callbacks=_minted()).deploy()
        deployed, sent, before = len(chain.deployed), len(chain.sent), store.state

        result = _orchestrator(load_config(), store, chain, callbacks=_minted()).deploy()

        self.assertEqual(result.operations, [])
        self.assertEqual((len(chain.deployed), len(chain.sent)), (deployed, sent))
        self.assertEqual(store.state, before)

    def test_upgrade(self) -> None:
        chain = FakeChain()
        store = MemoryStateStore()
        _orchestrator(load_config(), store, chain, callbacks=_minted()).deploy()
        old_address = store.state.facets["ERC20Facet"].address

        doc = example_config(protocolVersion=2)
        doc["facets"]["ERC20Facet"]["versions"]["2"] = {"upgradeInit": "initV2"}
        artifacts = FakeArtifacts({"ERC20Facet": ERC20_V2_ABI})
        result = _orchestrator(load_config(doc), store, chain, artifacts=artifacts).upgrade()

        self.assertEqual(len(result.phases_completed), 12)
        self.assertEqual([(op.action, op.facet_name) for op in result.operations], [("Replace", "ERC20Facet"), ("Add", "ERC20Facet")])
        replace, add = result.operations
        self.assertEqual(replace.selectors, ("0x18160ddd", "0x70a08231", "0xa9059cbb"))
        self.assertEqual(add.selectors, (function_selector("approve(address,uint256)"),))
        self.assertNotEqual(replace.facet_address, old_address)

        self.assertEqual(chain.sent[-1]["data"], initializer_calldata("initV2"))
        state = store.state
        self.assertEqual(state.protocol_version, 2)
        self.assertEqual(state.facets["ERC20Facet"].version, 2)
        self.assertEqual(state.facets["ERC20Facet"].address, replace.facet_address)
        self.assertEqual(len(state.facets["ERC20Facet"].selectors), 4)
        # Unchanged facets keep their records.
        self.assertEqual(state.facets["OwnershipFacet"].version, 1)

    def test_upgrade_without_diamond(self) -> None:
        with self.assertRaises(NotFoundError) as cm:
            _orchestrator(load_config(), MemoryStateStore(), FakeChain()).upgrade()
        self.assertEqual(cm.exception.phase, "pre_deploy_facets")
        self.assertEqual(cm.exception.last_successful_phase, "")

    def test_failure_is_annotated_and_rerun_continues(self) -> None:
        chain = FakeChain()
        chain.fail_on.add("ERC20Facet")
        store = MemoryStateStore()

        with self.assertRaises(ChainOperationError) as cm:
            _orchestrator(load_config(), store, chain, callbacks=_minted()).deploy()
        err = cm.exception
        self.assertEqual(err.phase, "deploy_facets")
        self.assertEqual(err.last_successful_phase, "pre_deploy_facets")
        self.assertEqual(err.deployment_id, "examplediamond-localhost-31337")
        # The diamond is recorded; no facet was cut in.
        self.assertTrue(store.state.diamond_address)
        self.assertEqual(sorted(store.state.facets), ["DiamondCutFacet"])
        self.assertEqual(chain.sent, [])

        chain.fail_on.clear()
        result = _orchestrator(load_config(), store, chain, callbacks=_minted()).deploy()
        self.assertEqual(result.status, "COMPLETED")
        self.assertEqual([d["contract"] for d in chain.deployed].count(DIAMOND_NAME), 1)
        self.assertIn("ERC20Facet", store.state.facets)

    def test_initializer_failure_is_finished_on_rerun(self) -> None:
        chain = _RevertingInitChain()
        store = MemoryStateStore()
        minted = []
        callbacks = CallbackRegistry()
        callbacks.register("ERC20Facet", {"callbackMint": lambda args: minted.append(args.facet_name)})

        with self.assertRaises(ChainOperationError) as cm:
            _orchestrator(load_config(), store, chain, callbacks=callbacks).deploy()
        self.assertEqual(cm.exception.phase, "perform_cut")
        self.assertEqual(len(chain.sent), 1)
        self.assertEqual(sorted(store.state.pending_post_cut), ["ERC20Facet", "OwnershipFacet"])
        self.assertEqual(minted, [])

        chain.revert_init = False
        result = _orchestrator(load_config(), store, chain, callbacks=callbacks).deploy()

        self.assertEqual(result.status, "COMPLETED")
        self.assertEqual(result.operations, [])
        # The cut is not sent again; only the initializer is.
        self.assertEqual(len(chain.sent), 2)
        self.assertEqual(chain.sent[1]["data"], initializer_calldata("initOwnership"))
        self.assertEqual(minted, ["ERC20Facet"])
        self.assertEqual(store.state.pending_post_cut, {})

    def test_missing_owner(self) -> None:
        with self.assertRaises(ConfigurationInvalidError):
            _orchestrator(load_config(), MemoryStateStore(), FakeChain(), signer="").deploy()

    def test_callback_failure_becomes_remediation(self) -> None:
        chain = FakeChain()
        store = MemoryStateStore()

        def boom(args) -> None:
            raise RuntimeError("mint reverted")

        callbacks = CallbackRegistry()
        callbacks.register("ERC20Facet", {"callbackMint": boom})
        result = _orchestrator(load_config(), store, chain, callbacks=callbacks).deploy()

        self.assertEqual(result.status, "COMPLETED_WITH_REMEDIATION")
        [item] = result.remediation
        self.assertEqual((item.facet_name, item.callback_name, item.kind), ("ERC20Facet", "callbackMint", "failed"))
        # The cut stays recorded.
        self.assertIn("ERC20Facet", store.state.facets)

    def test_verify_reports_drift(self) -> None:
        chain = FakeChain()
        store = MemoryStateStore()
        result = _orchestrator(load_config(), store, chain, callbacks=_minted(), verify=True).deploy()

        # The fake loupe is empty, so every recorded selector is missing on chain.
        self.assertIsNotNone(result.drift)
        self.assertEqual(result.drift["ERC20Facet"]["missing_on_chain"], sorted(store.state.facets["ERC20Facet"].selectors))

    def test_hooks_see_run_state(self) -> None:
        seen = []
        orch = _orchestrator(load_config(), MemoryStateStore(), FakeChain(), callbacks=_minted())
        orch.add_hook("post_deploy_diamond", lambda run: seen.append(run.state.diamond_address))
        orch.add_hook("post_update_selector_registry", lambda run: seen.append(len(run.operations)))
        orch.deploy()
        self.assertEqual(seen, [f"0x{2:040x}", 2])


class TestPlan(unittest.TestCase):
    def test_plan_touches_nothing(self) -> None:
        store = MemoryStateStore()
        orch = DeploymentOrchestrator(
            diamond_name=DIAMOND_NAME,
            network="localhost",
            chain_id=31337,
            config=load_config(),
            state_store=store,
            artifacts=FakeArtifacts(),
        )
        result = orch.plan()
        self.assertEqual(result.status, "PLANNED")
        self.assertEqual(
            [(op.action, op.facet_name) for op in result.operations],
            [("Add", "OwnershipFacet"), ("Add", "ERC20Facet")],
        )
        self.assertIsNone(result.operations[0].facet_address)
        self.assertEqual(store.saves, 0)
        self.assertEqual(store.state.facets, {})


if __name__ == "__main__":
    unittest.main()
