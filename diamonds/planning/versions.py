from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ..infra.errors import VersionConflictError
from ..infra.models import (
    DeployedState,
    DesiredConfiguration,
    FacetConfig,
    FacetResolution,
    Version,
)


def _can_upgrade_from(target_from: Optional[Tuple[Version, ...]], deployed: Version) -> bool:
    if target_from is None:
        return True
    return deployed in target_from


def resolve_facet_version(facet: FacetConfig, deployed_version: Optional[Version]) -> FacetResolution:
    """Decide what a single facet needs, given what is deployed.

    Pure function of (deployed_version, version table): the same inputs always
    produce the same target version and initializer.
    """
    versions = sorted(facet.versions)

    if deployed_version is None:
        if not versions:
            return FacetResolution(facet_name=facet.name, state="Undeployed", note="no versions declared")
        base = facet.versions[versions[0]]
        return FacetResolution(
            facet_name=facet.name,
            state="NeedsDeploy",
            target_version=base.version,
            initializer=base.deploy_init,
            callbacks=base.callbacks,
        )

    if not versions:
        return FacetResolution(
            facet_name=facet.name,
            state="VersionConflict",
            deployed_version=deployed_version,
            note="deployed but no versions declared",
        )

    highest = versions[-1]
    if deployed_version == highest:
        current = facet.versions[highest]
        return FacetResolution(
            facet_name=facet.name,
            state="UpToDate",
            deployed_version=deployed_version,
            target_version=highest,
            callbacks=current.callbacks,
        )

    # Highest reachable version wins; intermediate versions are never targeted.
    reachable = [
        v for v in versions if v > deployed_version and _can_upgrade_from(facet.versions[v].from_versions, deployed_version)
    ]
    if reachable:
        target = facet.versions[reachable[-1]]
        return FacetResolution(
            facet_name=facet.name,
            state="NeedsUpgrade",
            deployed_version=deployed_version,
            target_version=target.version,
            from_version=deployed_version,
            initializer=target.upgrade_init,
            callbacks=target.callbacks,
        )

    if deployed_version > highest:
        note = f"deployed version {deployed_version} is newer than the highest declared version {highest}"
    else:
        note = f"no declared version upgrades from {deployed_version}"
    return FacetResolution(
        facet_name=facet.name,
        state="VersionConflict",
        deployed_version=deployed_version,
        note=note,
    )


def resolve_versions(config: DesiredConfiguration, state: DeployedState) -> Dict[str, FacetResolution]:
    """Resolve every configured facet independently.

    Conflicts are reported in the result and leave the facet untouched. With
    `lockstep` set any conflict aborts the run instead.
    """
    out: Dict[str, FacetResolution] = {}
    for name, facet in config.facets.items():
        deployed = state.facets.get(name)
        deployed_version = deployed.version if deployed is not None else None
        out[name] = resolve_facet_version(facet, deployed_version)

    conflicts = version_conflicts(out)
    if conflicts and config.lockstep:
        details = "; ".join(f"{r.facet_name}: {r.note}" for r in conflicts)
        raise VersionConflictError(
            f"version conflict with lockstep protocol version {config.protocol_version}: {details}",
            facets=[r.facet_name for r in conflicts],
        )
    return out


def version_conflicts(resolutions: Dict[str, FacetResolution]) -> List[FacetResolution]:
    return [r for r in resolutions.values() if r.state == "VersionConflict"]
