from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..infra.adapters.artifacts_hardhat import link_bytecode
from ..infra.contracts import ApprovalService, ChainClient, StepRegistry
from ..infra.errors import ApprovalTimeoutError, ChainOperationError, DiamondsError, NotFoundError, RetryableError
from ..infra.models import ChainReceipt, ContractArtifact, ProposalState, StepRecord
from .polling import PollOptions, poll_until


@dataclass(frozen=True)
class RunContext:
    deployment_id: str
    diamond_name: str
    network: str
    chain_id: int
    verbose: bool = False


class ExecutionStrategy(Protocol):
    """The chain-mutating sub-steps of the phase protocol. Everything else is shared."""

    name: str

    def deploy_contract(
        self,
        ctx: RunContext,
        step: str,
        artifact: ContractArtifact,
        args: Optional[List[Any]] = None,
        libraries: Optional[Dict[str, str]] = None,
        description: str = "",
    ) -> ChainReceipt:
        raise NotImplementedError

    def send_transaction(self, ctx: RunContext, step: str, to: str, data: str, description: str = "") -> ChainReceipt:
        raise NotImplementedError

    def refresh(self, ctx: RunContext) -> None:
        raise NotImplementedError

    def records(self, ctx: RunContext) -> List[StepRecord]:
        raise NotImplementedError


class DirectStrategy:
    """Signs and sends every step with the local signer; a step completes on its receipt."""

    name = "direct"

    def __init__(self, chain: ChainClient) -> None:
        self.chain = chain

    def _call(self, step: str, fn: Callable[[], ChainReceipt]) -> ChainReceipt:
        try:
            return fn()
        except DiamondsError:
            raise
        except Exception as e:
            raise ChainOperationError(f"chain operation failed: step={step}: {e}") from e

    def deploy_contract(
        self,
        ctx: RunContext,
        step: str,
        artifact: ContractArtifact,
        args: Optional[List[Any]] = None,
        libraries: Optional[Dict[str, str]] = None,
        description: str = "",
    ) -> ChainReceipt:
        receipt = self._call(step, lambda: self.chain.deploy(artifact, list(args or []), dict(libraries or {})))
        print(f"[direct] step={step} address={receipt.address} tx_hash={receipt.tx_hash}")
        return receipt

    def send_transaction(self, ctx: RunContext, step: str, to: str, data: str, description: str = "") -> ChainReceipt:
        receipt = self._call(step, lambda: self.chain.send(to, data))
        print(f"[direct] step={step} to={to} tx_hash={receipt.tx_hash}")
        return receipt

    def refresh(self, ctx: RunContext) -> None:
        return None

    def records(self, ctx: RunContext) -> List[StepRecord]:
        return []


class DelegatedStrategy:
    """Submits every step as a proposal to an approval service and waits for execution.

    A pending StepRecord is written before a proposal is submitted. Re-entering a step:
      - executed: the recorded address/tx hash is returned, nothing is submitted
      - pending/approved: the recorded proposal is polled again
      - failed: a fresh proposal is submitted
    """

    name = "delegated"

    def __init__(
        self,
        approval: ApprovalService,
        step_registry_factory: Callable[[RunContext], StepRegistry],
        *,
        poll: Optional[PollOptions] = None,
        auto_execute: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.approval = approval
        self.step_registry_factory = step_registry_factory
        self.poll = poll or PollOptions()
        self.auto_execute = auto_execute
        self.sleep = sleep
        self.rng = rng
        self._registries: Dict[str, StepRegistry] = {}

    def registry(self, ctx: RunContext) -> StepRegistry:
        if ctx.deployment_id not in self._registries:
            self._registries[ctx.deployment_id] = self.step_registry_factory(ctx)
        return self._registries[ctx.deployment_id]

    def _approval_call(self, what: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except DiamondsError:
            raise
        except Exception as e:
            raise ChainOperationError(f"approval service {what} failed: {e}") from e

    def _submit(self, ctx: RunContext, step: str, payload: Dict[str, Any], description: str) -> ChainReceipt:
        reg = self.registry(ctx)
        rec = reg.get_step(step)

        if rec is not None and rec.status == "executed":
            print(f"[delegated][SKIP] step={step} status=executed address={rec.address} tx_hash={rec.tx_hash}")
            return ChainReceipt(tx_hash=rec.tx_hash, address=rec.address)

        proposal_id, recorded = "", "pending"
        if rec is not None and rec.status in ("pending", "approved") and rec.proposal_id:
            print(f"[delegated][RESUME] step={step} proposal_id={rec.proposal_id} status={rec.status}")
            proposal_id, recorded = rec.proposal_id, rec.status
        elif rec is not None and rec.status == "pending":
            # Recorded before submission but the proposal id never made it to disk.
            found = self._reconcile(step)
            if found is not None:
                proposal_id = found.proposal_id
                reg.save_step(
                    StepRecord(step_name=step, status="pending", proposal_id=proposal_id, description=description)
                )
                print(f"[delegated][RECONCILE] step={step} proposal_id={proposal_id} status={found.status}")

        if not proposal_id:
            body = dict(payload)
            body.update({"title": step, "description": description, "network": ctx.network, "chainId": ctx.chain_id})
            reg.save_step(StepRecord(step_name=step, status="pending", description=description))
            proposal_id = self._approval_call("create_proposal", lambda: self.approval.create_proposal(body))
            reg.save_step(StepRecord(step_name=step, status="pending", proposal_id=proposal_id, description=description))
            recorded = "pending"
            print(f"[delegated] step={step} proposal_id={proposal_id} status=pending")

        return self._await(ctx, step, proposal_id, recorded)

    def _reconcile(self, step: str) -> Optional[ProposalState]:
        """The newest live proposal titled after the step, if the service has one."""
        proposals = self._approval_call("find_proposals", lambda: self.approval.find_proposals(step))
        live = [p for p in proposals if p.status != "failed"]
        return live[-1] if live else None

    def _await(self, ctx: RunContext, step: str, proposal_id: str, recorded: str) -> ChainReceipt:
        reg = self.registry(ctx)
        seen = {"status": recorded, "executed_requested": False}

        def fetch() -> ProposalState:
            try:
                state = self.approval.get_proposal(proposal_id)
            except DiamondsError:
                raise
            except Exception as e:
                raise ChainOperationError(f"approval service get_proposal failed: {e}") from e
            if state.status != seen["status"]:
                reg.update_status(
                    step,
                    state.status,
                    tx_hash=state.tx_hash or None,
                    address=state.address or None,
                )
                seen["status"] = state.status
            if state.status == "approved" and self.auto_execute and not seen["executed_requested"]:
                print(f"[delegated] step={step} proposal_id={proposal_id} action=execute")
                self._approval_call("execute_proposal", lambda: self.approval.execute_proposal(proposal_id))
                seen["executed_requested"] = True
            return state

        def on_attempt(attempt: int, state: Optional[ProposalState]) -> None:
            status = state.status if state is not None else "unreachable"
            if status in ("executed", "failed") and not ctx.verbose:
                return
            print(f"[delegated][WAIT] step={step} attempt={attempt}/{self.poll.max_attempts} status={status}")

        try:
            final = poll_until(
                fetch,
                lambda s: s.status in ("executed", "failed"),
                self.poll,
                sleep=self.sleep,
                describe=f"step={step} proposal_id={proposal_id}",
                on_attempt=on_attempt,
                rng=self.rng,
            )
        except ApprovalTimeoutError as e:
            e.step_name = step
            e.proposal_id = proposal_id
            print(f"[delegated][TIMEOUT] step={step} proposal_id={proposal_id} status={seen['status']}")
            raise

        if final.status == "failed":
            print(f"[delegated][FAILED] step={step} proposal_id={proposal_id} error={final.error}")
            raise ChainOperationError(f"proposal failed: step={step} proposal_id={proposal_id} error={final.error}")

        print(f"[delegated] step={step} status=executed address={final.address} tx_hash={final.tx_hash}")
        return ChainReceipt(tx_hash=final.tx_hash, address=final.address)

    def deploy_contract(
        self,
        ctx: RunContext,
        step: str,
        artifact: ContractArtifact,
        args: Optional[List[Any]] = None,
        libraries: Optional[Dict[str, str]] = None,
        description: str = "",
    ) -> ChainReceipt:
        payload = {
            "kind": "deploy",
            "contractName": artifact.contract_name,
            "bytecode": link_bytecode(artifact, libraries),
            "abi": artifact.abi,
            "constructorInputs": list(args or []),
            "libraries": dict(libraries or {}),
        }
        return self._submit(ctx, step, payload, description or f"deploy {artifact.contract_name}")

    def send_transaction(self, ctx: RunContext, step: str, to: str, data: str, description: str = "") -> ChainReceipt:
        payload = {"kind": "call", "to": to, "data": data}
        return self._submit(ctx, step, payload, description or f"call {to}")

    def refresh(self, ctx: RunContext) -> None:
        """Poll every unfinished recorded step once and store what the service reports.

        A proposal the service no longer knows is marked failed, so the step is
        submitted afresh when the run reaches it.
        """
        reg = self.registry(ctx)
        for rec in reg.list_steps():
            if rec.status not in ("pending", "approved") or not rec.proposal_id:
                continue
            try:
                state = self.approval.get_proposal(rec.proposal_id)
            except RetryableError as e:
                print(f"[delegated][WARN] step={rec.step_name} refresh skipped: {e}")
                continue
            except NotFoundError:
                reg.update_status(rec.step_name, "failed")
                print(f"[delegated][WARN] step={rec.step_name} proposal_id={rec.proposal_id} status=unknown_to_service -> failed")
                continue
            if state.status != rec.status:
                reg.update_status(rec.step_name, state.status, tx_hash=state.tx_hash or None, address=state.address or None)
                print(f"[delegated] step={rec.step_name} status={rec.status}->{state.status}")

    def records(self, ctx: RunContext) -> List[StepRecord]:
        return self.registry(ctx).list_steps()
