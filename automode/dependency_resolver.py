"""
Dependency Resolver
===================

Pure functions over feature dicts (as returned by FeatureStore).

A dependency is satisfied once the referenced feature is verified or
completed. References to features that do not exist are never satisfied,
so a typo blocks the feature instead of silently releasing it.
"""

from __future__ import annotations

from typing import Iterable, Optional

from automode.database import DEFAULT_PRIORITY, DONE_STATUSES, SCHEDULABLE_STATUSES


def _dependencies(feature: dict) -> list[str]:
    deps = feature.get("dependencies") or []
    return [str(d) for d in deps]


def _done_ids(all_features: Iterable[dict]) -> set[str]:
    return {str(f["id"]) for f in all_features if f.get("status") in DONE_STATUSES}


def are_dependencies_satisfied(
    feature: dict,
    all_features: list[dict],
    done_ids: Optional[set[str]] = None,
) -> bool:
    """
    Check whether every dependency of feature is verified or completed.

    Args:
        feature: Feature dict with an optional "dependencies" list
        all_features: Every feature in the project
        done_ids: Pre-computed set of done ids, to avoid rescanning in loops
    """
    if done_ids is None:
        done_ids = _done_ids(all_features)
    return all(dep in done_ids for dep in _dependencies(feature))


def get_blocking_dependencies(feature: dict, all_features: list[dict]) -> list[str]:
    """Ids of dependencies that are not done yet (including unknown ids)."""
    done_ids = _done_ids(all_features)
    return [dep for dep in _dependencies(feature) if dep not in done_ids]


def get_ready_features(
    all_features: list[dict],
    exclude_ids: Iterable[str] = (),
) -> list[dict]:
    """
    Features the scheduler may start now.

    Schedulable status, dependencies satisfied, not excluded; ordered by
    priority (lower first), then creation time.
    """
    excluded = set(exclude_ids)
    done_ids = _done_ids(all_features)
    ready = [
        f for f in all_features
        if f.get("status") in SCHEDULABLE_STATUSES
        and str(f["id"]) not in excluded
        and are_dependencies_satisfied(f, all_features, done_ids)
    ]
    ready.sort(key=lambda f: (
        f.get("priority") if f.get("priority") is not None else DEFAULT_PRIORITY,
        f.get("createdAt") or "",
    ))
    return ready


def would_create_circular_dependency(
    all_features: list[dict],
    feature_id: str,
    dependency_id: str,
) -> bool:
    """
    Return True if making feature_id depend on dependency_id closes a cycle.

    That happens when feature_id is already reachable from dependency_id by
    following dependency edges (or the two ids are the same).
    """
    graph = {str(f["id"]): _dependencies(f) for f in all_features}
    target = str(feature_id)
    stack = [str(dependency_id)]
    visited: set[str] = set()

    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(graph.get(node, []))

    return False
