# dag.py
from __future__ import annotations

from typing import Dict, List, Sequence, Set, Tuple

from .errors import CycleError, WorkflowConfigurationError
from .model import OperationNode, OperationStage


def _clean_dependencies(node: OperationNode) -> List[str]:
    seen: Set[str] = set()
    cleaned: List[str] = []
    for raw in node.dependencies or []:
        name = (raw or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        cleaned.append(name)
    return cleaned


def build_dag(
    nodes: Sequence[OperationNode],
) -> Tuple[List[str], Dict[str, List[str]], Dict[str, int]]:
    """
    Validate operation nodes and build the dependency graph.

    Returns:
      names: resolved node names, in input order
      adj:   dependency -> dependents (dependents in input order)
      indeg: number of distinct dependencies per node
    """
    names: List[str] = []
    dependencies: Dict[str, List[str]] = {}

    for index, node in enumerate(nodes):
        if node is None:
            raise WorkflowConfigurationError(f"operation node at index {index} is undefined")
        name = node.resolved_name()
        if node.operation is None:
            raise WorkflowConfigurationError(
                f"operation node {name or f'#{index}'!r} has no operation"
            )
        if not name:
            raise WorkflowConfigurationError(f"operation node at index {index} has no name")
        if name in dependencies:
            raise WorkflowConfigurationError(f"operation {name!r} defined multiple times")
        names.append(name)
        dependencies[name] = _clean_dependencies(node)

    adj: Dict[str, List[str]] = {name: [] for name in names}
    indeg: Dict[str, int] = {name: 0 for name in names}

    for name in names:
        for dependency in dependencies[name]:
            if dependency == name:
                raise WorkflowConfigurationError(f"operation {name!r} cannot depend on itself")
            if dependency not in adj:
                raise WorkflowConfigurationError(
                    f"operation {name!r} depends on unknown operation {dependency!r}"
                )
            # Edge dependency -> name (dependency must run before name)
            adj[dependency].append(name)
            indeg[name] += 1

    return names, adj, indeg


def topo_levels(
    names: Sequence[str],
    adj: Dict[str, List[str]],
    indeg: Dict[str, int],
) -> List[List[str]]:
    """
    Convert the graph into topological "levels" (stages).

    Every level is ordered by original input position, so the same input
    always yields the same stages.
    """
    position = {name: index for index, name in enumerate(names)}
    indeg = dict(indeg)  # copy (we mutate it)

    wave = [name for name in names if indeg[name] == 0]
    levels: List[List[str]] = []
    processed = 0

    while wave:
        levels.append(wave)
        processed += len(wave)

        ready: List[str] = []
        for node in wave:
            for child in adj.get(node, []):
                indeg[child] -= 1
                if indeg[child] == 0:
                    ready.append(child)
        wave = sorted(ready, key=position.__getitem__)

    if processed != len(names):
        raise CycleError([name for name in names if indeg[name] > 0])

    return levels


def plan_operation_stages(nodes: Sequence[OperationNode]) -> List[OperationStage]:
    """
    Order operation nodes into dependency-respecting stages.

    Operations inside one stage are independent of each other and may run
    concurrently; stages must run in the returned order. A cycle raises
    CycleError and produces no stages at all.
    """
    if not nodes:
        return []

    names, adj, indeg = build_dag(nodes)
    levels = topo_levels(names, adj, indeg)

    by_name = {node.resolved_name(): node for node in nodes}
    return [OperationStage(operations=[by_name[name] for name in level]) for level in levels]
