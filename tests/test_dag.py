# tests/test_dag.py
import random

import pytest

from repofleet.dag import plan_operation_stages
from repofleet.errors import CycleError, WorkflowConfigurationError
from repofleet.model import OperationNode
from repofleet.operations.base import Operation


class NamedOperation(Operation):
    def __init__(self, name):
        self._name = name

    def name(self):
        return self._name

    def execute(self, ctx, env, state):
        pass


def node(name, *deps):
    return OperationNode(operation=NamedOperation(name), name=name, dependencies=list(deps))


def stage_names(stages):
    return [stage.names() for stage in stages]


def test_empty_input_has_no_stages():
    assert plan_operation_stages([]) == []


def test_dependencies_run_in_earlier_stages():
    stages = plan_operation_stages([
        node("audit", "rename"),
        node("rename", "canonical"),
        node("canonical"),
    ])
    assert stage_names(stages) == [["canonical"], ["rename"], ["audit"]]


def test_independent_nodes_share_a_stage_in_input_order():
    stages = plan_operation_stages([
        node("b"),
        node("a"),
        node("c", "a", "b"),
        node("d", "a"),
    ])
    assert stage_names(stages) == [["b", "a"], ["c", "d"]]


def test_stages_are_deterministic():
    nodes = [node("x"), node("y", "x"), node("z", "x"), node("w")]
    first = stage_names(plan_operation_stages(nodes))
    for _ in range(5):
        assert stage_names(plan_operation_stages(nodes)) == first


def test_name_falls_back_to_operation_name():
    stages = plan_operation_stages([OperationNode(operation=NamedOperation("canonical"))])
    assert stage_names(stages) == [["canonical"]]


def test_duplicate_dependencies_count_once():
    stages = plan_operation_stages([node("a"), node("b", "a", "a", " a ")])
    assert stage_names(stages) == [["a"], ["b"]]


def test_cycle_is_rejected():
    with pytest.raises(CycleError) as excinfo:
        plan_operation_stages([node("a", "b"), node("b", "a"), node("c")])
    assert excinfo.value.stuck == ["a", "b"]
    assert "cycle" in str(excinfo.value)


def test_duplicate_name_is_rejected():
    with pytest.raises(WorkflowConfigurationError, match="defined multiple times"):
        plan_operation_stages([node("a"), node("a")])


def test_self_dependency_is_rejected():
    with pytest.raises(WorkflowConfigurationError, match="cannot depend on itself"):
        plan_operation_stages([node("a", "a")])


def test_unknown_dependency_is_rejected():
    with pytest.raises(WorkflowConfigurationError, match="unknown operation 'missing'"):
        plan_operation_stages([node("a", "missing")])


def test_undefined_node_is_rejected():
    with pytest.raises(WorkflowConfigurationError, match="index 1 is undefined"):
        plan_operation_stages([node("a"), None])


def test_node_without_operation_is_rejected():
    with pytest.raises(WorkflowConfigurationError, match="has no operation"):
        plan_operation_stages([OperationNode(operation=None, name="a")])


def random_acyclic_nodes(seed, size=12):
    rng = random.Random(seed)
    names = [f"n{i}" for i in range(size)]
    nodes = []
    for index, name in enumerate(names):
        # only earlier names keep the graph acyclic
        deps = rng.sample(names[:index], rng.randint(0, min(index, 3)))
        nodes.append(node(name, *deps))
    rng.shuffle(nodes)
    return nodes


@pytest.mark.parametrize("seed", range(20))
def test_random_acyclic_graphs_stage_every_node_after_its_dependencies(seed):
    nodes = random_acyclic_nodes(seed)

    stages = stage_names(plan_operation_stages(nodes))

    placed = {name: index for index, names in enumerate(stages) for name in names}
    assert sorted(name for names in stages for name in names) == sorted(n.name for n in nodes)
    assert len(placed) == len(nodes)
    for n in nodes:
        if not n.dependencies:
            assert placed[n.name] == 0
        else:
            # each node lands in the first stage its dependencies allow
            assert placed[n.name] == 1 + max(placed[dep] for dep in n.dependencies)
    position = {n.name: index for index, n in enumerate(nodes)}
    for names in stages:
        assert names == sorted(names, key=position.__getitem__)
