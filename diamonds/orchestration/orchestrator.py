from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..infra.contracts import ArtifactStore, ChainClient, DeployedStateStore
from ..infra.errors import ConfigurationInvalidError, DiamondsError, NotConfiguredError, NotFoundError
from ..infra.models import (
    DIAMOND_CUT_FACET,
    ZERO_ADDRESS,
    CutOperation,
    DeployedFacet,
    DeployedState,
    DesiredConfiguration,
    FacetResolution,
    NewFacetDeployment,
    PendingPostCut,
)
from ..planning.calldata import (
    DIAMOND_CUT_SIGNATURE,
    encode_diamond_cut,
    initializer_calldata,
    protocol_initializer,
)
from ..planning.cut_planner import apply_cut, facet_sort_key, plan_cut
from ..planning.drift import compare_facet_selectors, has_drift
from ..planning.selectors import function_selector, resolve_facet_selectors
from ..planning.versions import resolve_versions, version_conflicts
from . import idempotency
from .callbacks import CallbackArgs, CallbackDispatcher, CallbackRegistry, RemediationItem
from .phases import PhaseCursor, RunMode, phases_for
from .registry import DeploymentRegistry
from .strategies import ExecutionStrategy, RunContext


@dataclass
class RunState:
    """Everything a run learns as it walks the phase list. Hooks receive it."""

    mode: str  # deploy|upgrade|plan
    ctx: RunContext
    state: DeployedState
    resolutions: Dict[str, FacetResolution] = field(default_factory=dict)
    selectors: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    deployments: Dict[str, NewFacetDeployment] = field(default_factory=dict)
    operations: List[CutOperation] = field(default_factory=list)
    init_address: str = ZERO_ADDRESS
    init_calldata: str = "0x"
    remediation: List[RemediationItem] = field(default_factory=list)
    drift: Optional[Dict[str, Dict[str, List[str]]]] = None

    def changing(self, config: DesiredConfiguration) -> List[FacetResolution]:
        """Facets that need a cut this run, in deployment order."""
        names = [n for n, r in self.resolutions.items() if r.needs_cut]
        return [self.resolutions[n] for n in sorted(names, key=lambda n: facet_sort_key(n, config))]


@dataclass
class RunResult:
    deployment_id: str
    mode: str
    status: str  # PLANNED|COMPLETED|COMPLETED_WITH_REMEDIATION
    phases_completed: List[str]
    operations: List[CutOperation]
    conflicts: List[FacetResolution]
    remediation: List[RemediationItem]
    state: DeployedState
    drift: Optional[Dict[str, Dict[str, List[str]]]] = None


PhaseHook = Callable[[RunState], None]


class DeploymentOrchestrator:
    """Drives one diamond on one network through the phase protocol.

    The driver owns ordering, state persistence and error annotation; the
    strategy only performs the chain-mutating steps.
    """

    def __init__(
        self,
        *,
        diamond_name: str,
        network: str,
        chain_id: int,
        config: DesiredConfiguration,
        state_store: DeployedStateStore,
        artifacts: ArtifactStore,
        strategy: Optional[ExecutionStrategy] = None,
        callbacks: Optional[CallbackRegistry] = None,
        signer_address: str = "",
        verbose: bool = False,
        verify_chain: Optional[ChainClient] = None,
        hooks: Optional[Mapping[str, Sequence[PhaseHook]]] = None,
        registry: Optional[DeploymentRegistry] = None,
    ) -> None:
        self.diamond_name = diamond_name
        self.network = network
        self.chain_id = int(chain_id)
        self.config = config
        self.state_store = state_store
        self.artifacts = artifacts
        self.strategy = strategy
        self.callbacks = callbacks if callbacks is not None else CallbackRegistry()
        self.signer_address = signer_address
        self.verbose = verbose
        self.verify_chain = verify_chain
        self.hooks: Dict[str, List[PhaseHook]] = {k: list(v) for k, v in (hooks or {}).items()}
        self.registry = registry

        self.deployment_id = idempotency.deployment_id(diamond_name, network, self.chain_id)
        self.ctx = RunContext(
            deployment_id=self.deployment_id,
            diamond_name=diamond_name,
            network=network,
            chain_id=self.chain_id,
            verbose=verbose,
        )
        self._work: Dict[str, Callable[[RunState], None]] = {
            "deploy_diamond": self._deploy_diamond,
            "pre_deploy_facets": self._resolve,
            "deploy_facets": self._deploy_facets,
            "update_selector_registry": self._plan,
            "pre_perform_cut": self._prepare_init,
            "perform_cut": self._perform_cut,
            "post_perform_cut": self._verify,
            "pre_run_callbacks": self._check_callbacks,
            "run_callbacks": self._run_callbacks,
        }

    def add_hook(self, phase: str, hook: PhaseHook) -> None:
        self.hooks.setdefault(phase, []).append(hook)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def deploy(self) -> RunResult:
        return self._guarded("deploy")

    def upgrade(self) -> RunResult:
        return self._guarded("upgrade")

    def plan(self) -> RunResult:
        """Dry run: resolve versions and plan the cut without touching the chain."""
        run = RunState(mode="plan", ctx=self.ctx, state=self.state_store.load())
        if not run.state.diamond_address:
            # A fresh diamond gets its cut facet from the constructor, not from a cut.
            self._record_cut_facet(run.state, "", "")
        self._resolve(run)
        run.operations = plan_cut(run.state, self.config, run.resolutions, run.selectors)
        self._print_operations(run.operations, dry_run=True)
        return RunResult(
            deployment_id=self.deployment_id,
            mode="plan",
            status="PLANNED",
            phases_completed=[],
            operations=run.operations,
            conflicts=version_conflicts(run.resolutions),
            remediation=[],
            state=run.state,
        )

    def _guarded(self, mode: RunMode) -> RunResult:
        if self.registry is None:
            return self._run(mode)
        return self.registry.run_exclusive(self.deployment_id, lambda: self._run(mode))

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def _run(self, mode: RunMode) -> RunResult:
        if self.strategy is None:
            raise NotConfiguredError(f"no execution strategy configured for {self.deployment_id}")
        run = RunState(mode=mode, ctx=self.ctx, state=self.state_store.load())
        cursor = PhaseCursor(phases_for(mode))
        print(
            f"[deployer] deployment_id={self.deployment_id} mode={mode} strategy={self.strategy.name} "
            f"protocol_version={self.config.protocol_version}"
        )

        try:
            self.strategy.refresh(self.ctx)
        except DiamondsError as e:
            self._halt(e, cursor.current, cursor)
            raise

        while not cursor.done:
            phase = cursor.current
            if self.verbose:
                print(f"[deployer] phase={phase} status=started")
            try:
                work = self._work.get(phase)
                if work is not None:
                    work(run)
                for hook in self.hooks.get(phase, []):
                    hook(run)
            except DiamondsError as e:
                self._halt(e, phase, cursor)
                raise
            cursor.advance()
            if self.verbose:
                print(f"[deployer] phase={phase} status=completed")

        status = "COMPLETED_WITH_REMEDIATION" if run.remediation else "COMPLETED"
        print(
            f"[deployer] deployment_id={self.deployment_id} mode={mode} status={status} "
            f"operations={len(run.operations)} remediation={len(run.remediation)}"
        )
        return RunResult(
            deployment_id=self.deployment_id,
            mode=mode,
            status=status,
            phases_completed=list(cursor.completed),
            operations=run.operations,
            conflicts=version_conflicts(run.resolutions),
            remediation=run.remediation,
            state=run.state,
            drift=run.drift,
        )

    def _halt(self, e: DiamondsError, phase: str, cursor: PhaseCursor) -> None:
        e.annotate(
            phase=phase,
            last_successful_phase=cursor.last_successful,
            deployment_id=self.deployment_id,
            steps=self.strategy.records(self.ctx),
        )
        print(
            f"[deployer][FAILED] phase={phase} last_successful_phase={cursor.last_successful or '-'} "
            f"error={e.__class__.__name__}: {e}"
        )

    def _save(self, run: RunState) -> None:
        self.state_store.save(run.state)

    # ------------------------------------------------------------------
    # Phase work
    # ------------------------------------------------------------------

    def _deploy_diamond(self, run: RunState) -> None:
        if run.state.diamond_address:
            print(f"[deployer] phase=deploy_diamond diamond={run.state.diamond_address} action=skip reason=already_deployed")
            return

        owner = self.signer_address or run.state.deployer_address
        if not owner:
            raise ConfigurationInvalidError("diamond owner is unknown: no signer address and no recorded DeployerAddress")

        cut_artifact = self.artifacts.get_artifact(DIAMOND_CUT_FACET)
        cut = self.strategy.deploy_contract(
            self.ctx, idempotency.step_deploy_diamond_cut_facet(), cut_artifact, description=f"deploy {DIAMOND_CUT_FACET}"
        )

        diamond_artifact = self.artifacts.get_artifact(self.diamond_name)
        diamond = self.strategy.deploy_contract(
            self.ctx,
            idempotency.step_deploy_diamond(),
            diamond_artifact,
            [owner, cut.address],
            description=f"deploy {self.diamond_name}",
        )

        run.state.diamond_address = diamond.address
        run.state.deployer_address = owner
        self._record_cut_facet(run.state, cut.address, cut.tx_hash)
        self._save(run)
        print(f"[deployer] phase=deploy_diamond diamond={diamond.address} cut_facet={cut.address} owner={owner}")

    def _record_cut_facet(self, state: DeployedState, address: str, tx_hash: str) -> None:
        """The diamond constructor wires diamondCut to the cut facet."""
        cut_config = self.config.facets.get(DIAMOND_CUT_FACET)
        state.facets[DIAMOND_CUT_FACET] = DeployedFacet(
            address=address,
            tx_hash=tx_hash,
            version=min(cut_config.versions) if cut_config is not None and cut_config.versions else None,
            selectors=[function_selector(DIAMOND_CUT_SIGNATURE)],
        )

    def _resolve(self, run: RunState) -> None:
        if run.mode == "upgrade" and not run.state.diamond_address:
            raise NotFoundError(f"no deployed diamond recorded for {self.deployment_id}; run deploy first")

        run.resolutions = resolve_versions(self.config, run.state)
        for r in run.resolutions.values():
            if r.state == "VersionConflict":
                print(f"[deployer][CONFLICT] facet={r.facet_name} deployed_version={r.deployed_version} note={r.note}")
            elif self.verbose or r.needs_cut:
                print(
                    f"[deployer] facet={r.facet_name} state={r.state} "
                    f"deployed_version={r.deployed_version} target_version={r.target_version}"
                )

        for r in run.changing(self.config):
            facet = self.config.facets[r.facet_name]
            missing = [lib for lib in facet.libraries if lib not in run.state.external_libraries]
            if missing:
                raise ConfigurationInvalidError(
                    f"facet {r.facet_name!r} needs libraries not recorded in ExternalLibraries: {missing}"
                )
            vc = facet.versions[r.target_version]
            abi = self.artifacts.get_interface(r.facet_name)
            run.selectors[r.facet_name] = resolve_facet_selectors(abi, vc.deploy_include, vc.deploy_exclude)

    def _deploy_facets(self, run: RunState) -> None:
        for r in run.changing(self.config):
            facet = self.config.facets[r.facet_name]
            libraries = {lib: run.state.external_libraries[lib] for lib in facet.libraries}
            step = idempotency.step_deploy_facet(r.facet_name, r.target_version)
            print(f"[deployer] phase=deploy_facets facet={r.facet_name} version={r.target_version} step={step}")
            receipt = self.strategy.deploy_contract(
                self.ctx,
                step,
                self.artifacts.get_artifact(r.facet_name),
                libraries=libraries,
                description=f"deploy {r.facet_name} v{r.target_version}",
            )
            run.deployments[r.facet_name] = NewFacetDeployment(
                facet_name=r.facet_name,
                address=receipt.address,
                tx_hash=receipt.tx_hash,
                version=r.target_version,
            )

    def _plan(self, run: RunState) -> None:
        addresses = {name: d.address for name, d in run.deployments.items()}
        run.operations = plan_cut(run.state, self.config, run.resolutions, run.selectors, addresses)
        self._print_operations(run.operations, dry_run=False)

    def _prepare_init(self, run: RunState) -> None:
        addresses = {name: f.address for name, f in run.state.facets.items()}
        addresses.update({name: d.address for name, d in run.deployments.items()})
        run.init_address, run.init_calldata = protocol_initializer(self.config, run.resolutions, addresses)

    def _perform_cut(self, run: RunState) -> None:
        if run.operations or run.init_address != ZERO_ADDRESS or run.deployments:
            if run.operations or run.init_address != ZERO_ADDRESS:
                calldata = encode_diamond_cut(run.operations, run.init_address, run.init_calldata)
                step = idempotency.step_diamond_cut(run.operations, run.init_address, run.init_calldata)
                print(
                    f"[deployer] phase=perform_cut step={step} operations={len(run.operations)} "
                    f"init_address={run.init_address}"
                )
                self.strategy.send_transaction(
                    self.ctx,
                    step,
                    run.state.diamond_address,
                    calldata,
                    description=f"diamondCut {self.diamond_name} protocol v{self.config.protocol_version}",
                )

            run.state = apply_cut(
                run.state,
                run.operations,
                versions={name: d.version for name, d in run.deployments.items()},
                facet_addresses={name: d.address for name, d in run.deployments.items()},
                tx_hashes={name: d.tx_hash for name, d in run.deployments.items()},
                protocol_version=self.config.protocol_version,
            )
            # Folded and marked in one save: a halt from here on resumes at the initializers.
            for r in run.changing(self.config):
                run.state.pending_post_cut[r.facet_name] = PendingPostCut(
                    version=r.target_version,
                    initializer="" if r.facet_name == self.config.protocol_init_facet else r.initializer,
                    callbacks=tuple(r.callbacks),
                )
            self._save(run)
        else:
            if run.state.protocol_version != self.config.protocol_version:
                run.state.protocol_version = self.config.protocol_version
                self._save(run)
            print("[deployer] phase=perform_cut action=skip reason=no_changes")

        self._run_initializers(run)

    def _pending(self, run: RunState) -> List[Tuple[str, PendingPostCut]]:
        """Facets owed an initializer or callbacks, in deployment order."""
        names = sorted(run.state.pending_post_cut, key=lambda n: facet_sort_key(n, self.config))
        return [(n, run.state.pending_post_cut[n]) for n in names]

    def _run_initializers(self, run: RunState) -> None:
        for name, pending in self._pending(run):
            if pending.initialized:
                continue
            if pending.initializer:
                step = idempotency.step_facet_init(name, pending.version)
                print(f"[deployer] phase=perform_cut facet={name} initializer={pending.initializer} step={step}")
                self.strategy.send_transaction(
                    self.ctx,
                    step,
                    run.state.diamond_address,
                    initializer_calldata(pending.initializer),
                    description=f"initialize {name} v{pending.version}",
                )
            pending.initialized = True
            self._save(run)

    def _verify(self, run: RunState) -> None:
        if self.verify_chain is None:
            return
        onchain = self.verify_chain.facets(run.state.diamond_address)
        run.drift = compare_facet_selectors(run.state, onchain)
        if not has_drift(run.drift):
            print("[deployer] phase=post_perform_cut verify=ok")
            return
        for facet, r in run.drift.items():
            if r["extra_on_chain"] or r["missing_on_chain"]:
                print(
                    f"[deployer][WARN] drift facet={facet} extra_on_chain={len(r['extra_on_chain'])} "
                    f"missing_on_chain={len(r['missing_on_chain'])}"
                )

    def _check_callbacks(self, run: RunState) -> None:
        owed = [name for name, _ in self._pending(run)]
        for facet, name in self.callbacks.missing(self.config, owed, diamond_name=self.diamond_name):
            if facet == self.diamond_name and not owed:
                continue
            print(f"[callbacks][WARN] facet={facet} callback={name} status=not_registered")

    def _run_callbacks(self, run: RunState) -> None:
        pending = self._pending(run)
        if not pending:
            return
        order = [(name, p.version, p.callbacks) for name, p in pending if p.callbacks]
        dispatcher = CallbackDispatcher(self.callbacks, verbose=self.verbose)
        base = CallbackArgs(
            diamond_name=self.diamond_name,
            network=self.network,
            chain_id=self.chain_id,
            deployment_id=self.deployment_id,
            state=run.state,
            chain=self.verify_chain,
            verbose=self.verbose,
        )
        run.remediation.extend(dispatcher.run(base, order, protocol_callback=self.config.protocol_callback))
        run.state.pending_post_cut = {}
        self._save(run)

    def _print_operations(self, operations: List[CutOperation], *, dry_run: bool) -> None:
        tag = "[plan]" if dry_run else "[deployer]"
        if not operations:
            print(f"{tag} operations=0")
            return
        for i, op in enumerate(operations, start=1):
            print(
                f"{tag} op={i}/{len(operations)} action={op.action} facet={op.facet_name} "
                f"address={op.facet_address or '-'} selectors={len(op.selectors)}"
            )
            if self.verbose or dry_run:
                for sel in op.selectors:
                    print(f"{tag}   {sel}")
