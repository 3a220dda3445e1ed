"""Dependency bump propagation.

After each project's own version decision is known, bumps flow through the
dependency graph:

- Dependency tracking: a project that is not otherwise released but depends
  (directly or transitively) on a released project gets a synthetic patch
  bump, marked as a dependency bump.
- Fixed release groups: when any member of a fixed group is released, every
  member moves to one shared version. The implicit workspace group holds the
  fixed projects that are not in a named group.

Both rules feed each other, so they are applied repeatedly until nothing
changes. The input decisions are never modified.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel

from .config import ResolvedProjectConfig
from .graph import Graph, topo_sort
from .models import VersionDecision
from .resolver import render_tag_name
from .versions import bump_version, highest_version, max_bump

WORKSPACE_GROUP = "*"


class PropagationPolicy(BaseModel):
    """Per-project propagation settings, taken from resolved configs."""

    configs: dict[str, ResolvedProjectConfig]

    @classmethod
    def from_configs(cls, configs: Mapping[str, ResolvedProjectConfig]) -> PropagationPolicy:
        return cls(configs=dict(configs))

    def tracks(self, name: str) -> bool:
        config = self.configs[name]
        return config.track_deps and not config.excluded

    def fixed_group(self, name: str) -> str | None:
        """Key of the fixed group a project versions with, or None."""
        config = self.configs[name]
        if config.relationship != "fixed" or config.excluded:
            return None
        return config.release_group or WORKSPACE_GROUP


def _track(
    order: list[str],
    result: dict[str, VersionDecision],
    graph: Graph,
    policy: PropagationPolicy,
) -> bool:
    changed = False
    for name in order:
        decision = result[name]
        released = sorted(
            dep for dep in graph.get(name, ()) if dep in result and result[dep].is_release
        )
        if not released:
            continue
        update: dict = {}
        if released != decision.bumped_dependencies:
            update["bumped_dependencies"] = released
        if not decision.is_release and policy.tracks(name):
            next_version = bump_version(decision.current_version, "patch")
            update |= {
                "next_version": next_version,
                "bump": "patch",
                "dependency_bump": True,
                "tag": render_tag_name(policy.configs[name], next_version),
            }
        if update:
            result[name] = decision.model_copy(update=update)
            changed = True
    return changed


def _unify(
    order: list[str], result: dict[str, VersionDecision], policy: PropagationPolicy
) -> bool:
    groups: dict[str, list[str]] = {}
    for name in order:
        key = policy.fixed_group(name)
        if key is not None:
            groups.setdefault(key, []).append(name)

    changed = False
    for members in groups.values():
        decisions = [result[m] for m in members]
        if not any(d.is_release for d in decisions):
            continue
        kind = max_bump(d.bump for d in decisions)
        highest_current = highest_version(d.current_version for d in decisions)
        top = next(d for d in decisions if d.current_version == highest_current)
        candidates = [d.next_version for d in decisions]
        candidates.append(
            bump_version(top.current_version, kind, policy.configs[top.project].preid)
        )
        target = highest_version(candidates)
        for name in members:
            decision = result[name]
            if decision.next_version == target:
                continue
            result[name] = decision.model_copy(
                update={
                    "next_version": target,
                    "synced": True,
                    "tag": render_tag_name(policy.configs[name], target),
                }
            )
            changed = True
    return changed


def propagate(
    decisions: Mapping[str, VersionDecision], graph: Graph, policy: PropagationPolicy
) -> list[VersionDecision]:
    """Propagate bumps through dependents and fixed release groups.

    Args:
        decisions: Map of project name → its own VersionDecision.
        graph: Map of project name → internal dependency names. May contain
            projects without a decision; they only contribute edges.
        policy: Per-project propagation settings.

    Returns:
        New decisions in topological order (dependencies first,
        alphabetical among peers).

    Raises:
        CyclicDependency: If the graph has a cycle. Raised before anything
            is computed.
    """
    order = [n for n in topo_sort(graph) if n in decisions]
    order += sorted(n for n in decisions if n not in graph)

    result = {name: decisions[name].model_copy(deep=True) for name in order}
    while True:
        tracked = _track(order, result, graph, policy)
        unified = _unify(order, result, policy)
        if not (tracked or unified):
            break
    return [result[name] for name in order]
