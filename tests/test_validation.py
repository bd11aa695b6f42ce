"""Tests for port compatibility and whole-graph checks."""

import pytest

from blockflow.errors import CyclicDependencyError, NoEntryPointError
from blockflow.graph import Graph
from blockflow.library import default_registry
from blockflow.registry import NodeKindDefinition
from blockflow.types import Direction, PortSpec, ValueType
from blockflow.validation import DefaultCompatibilityMatcher, GraphValidator


class TestDefaultCompatibilityMatcher:
    """Test the default port matcher."""

    def setup_method(self) -> None:
        self.matcher = DefaultCompatibilityMatcher()

    def test_exec_only_with_exec(self) -> None:
        """Test exec ports."""
        out = PortSpec.exec_out()
        assert self.matcher.are_compatible(out, PortSpec.exec_in())
        assert not self.matcher.are_compatible(out, PortSpec("a", Direction.IN, ValueType.ANY))

    def test_any_and_exact(self) -> None:
        """Test data ports."""
        number = PortSpec("n", Direction.OUT, ValueType.NUMBER)
        assert self.matcher.are_compatible(number, PortSpec("a", Direction.IN, ValueType.ANY))
        assert self.matcher.are_compatible(number, PortSpec("a", Direction.IN, ValueType.NUMBER))
        assert not self.matcher.are_compatible(
            number, PortSpec("a", Direction.IN, ValueType.STRING)
        )


class TestGraphValidator:
    """Test GraphValidator."""

    def setup_method(self) -> None:
        self.graph = Graph(default_registry())
        self.validator = GraphValidator()

    def test_clean_graph(self) -> None:
        """Test a valid graph has no issues."""
        start = self.graph.add_node("event.start")
        log = self.graph.add_node("debug.log")
        self.graph.connect(start.id, "exec", log.id, "exec")

        assert self.validator.find_issues(self.graph) == []
        self.validator.validate(self.graph)

    def test_missing_entry_point(self) -> None:
        """Test a graph without start nodes."""
        self.graph.add_node("debug.log")

        with pytest.raises(NoEntryPointError):
            self.validator.validate(self.graph)

    def test_data_cycle(self) -> None:
        """Test a cycle through data edges is found."""
        self.graph.add_node("event.start")
        a = self.graph.add_node("math.add", node_id="a")
        b = self.graph.add_node("math.add", node_id="b")
        self.graph.connect(a.id, "value", b.id, "a")
        self.graph.connect(b.id, "value", a.id, "a")

        cycle = self.validator.find_data_cycle(self.graph)

        assert cycle is not None
        assert {node_id for node_id, _ in cycle} == {"a", "b"}
        with pytest.raises(CyclicDependencyError):
            self.validator.validate(self.graph)

    def test_exec_loops_are_not_data_cycles(self) -> None:
        """Test control-flow back edges are allowed."""
        self.graph.add_node("event.start")
        loop = self.graph.add_node("logic.while")
        log = self.graph.add_node("debug.log")
        self.graph.connect(loop.id, "loop", log.id, "exec")
        self.graph.connect(log.id, "exec", loop.id, "exec")

        assert self.validator.find_data_cycle(self.graph) is None

    def test_unbound_input(self) -> None:
        """Test an input with no edge and no literal."""
        self.graph.registry.register(NodeKindDefinition(
            "test.needs", inputs=[PortSpec("value", Direction.IN, ValueType.NUMBER)],
        ))
        node = self.graph.add_node("test.needs")

        issues = self.validator.find_unbound_inputs(self.graph)

        assert [i.node_ids for i in issues] == [[node.id]]
        assert issues[0].code == "unbound_input"

    def test_dangling_edge_after_reregistration(self) -> None:
        """Test edges whose port was dropped by a newer definition."""
        registry = self.graph.registry
        registry.register(NodeKindDefinition(
            "test.src", shape="expression",
            outputs={"old": {"value_type": "number"}},
        ))
        src = self.graph.add_node("test.src")
        log = self.graph.add_node("debug.log")
        edge = self.graph.connect(src.id, "old", log.id, "message")

        registry.register(NodeKindDefinition(
            "test.src", shape="expression",
            outputs={"new": {"value_type": "number"}},
        ))
        issues = self.validator.find_dangling_edges(self.graph)

        assert len(issues) == 1
        assert issues[0].edge == edge
        assert issues[0].code == "dangling_edge"

    def test_unknown_kind(self) -> None:
        """Test instances whose kind is no longer registered."""
        node = self.graph.add_node("debug.log")
        node.kind_id = "plugin.gone"

        issues = self.validator.find_unknown_kinds(self.graph)

        assert issues[0].node_ids == [node.id]
