import pytest

from docflow.core.errors import CycleError
from docflow.graph import analyzer


def costs(table, default=1.0):
    return lambda node: table.get(node.id, default)


class TestOrdering:
    def test_linear_chain_order(self, chain_graph):
        order = analyzer.topological_order(chain_graph.nodes, chain_graph.edges)
        assert order == ["input", "transform", "output"]

    def test_every_edge_points_forward(self, graph_factory):
        graph = graph_factory(
            ["e", "d", "c", "b", "a"],
            [("a", "b"), ("c", "b"), ("b", "d"), ("e", "d"), ("a", "e")],
        )
        order = analyzer.topological_order(graph.nodes, graph.edges)
        position = {nid: i for i, nid in enumerate(order)}
        assert sorted(order) == ["a", "b", "c", "d", "e"]
        for edge in graph.edges:
            assert position[edge.source] < position[edge.target]

    def test_ties_resolve_by_declaration_order(self, graph_factory):
        graph = graph_factory(["z", "y", "x"], [("z", "x"), ("y", "x")])
        assert analyzer.topological_order(graph.nodes, graph.edges) == ["z", "y", "x"]

    def test_cycle_raises_with_members(self, cyclic_graph):
        with pytest.raises(CycleError) as exc_info:
            analyzer.topological_order(cyclic_graph.nodes, cyclic_graph.edges)
        assert exc_info.value.cycle == ["X", "Y"]
        assert exc_info.value.retryable is False


class TestCycles:
    def test_acyclic_graph_has_no_cycle(self, diamond_graph):
        assert analyzer.detect_cycles(diamond_graph.nodes, diamond_graph.edges) == []

    def test_cycle_behind_an_entry_node(self, graph_factory):
        graph = graph_factory(["a", "b", "c", "d"], [("a", "b"), ("b", "c"), ("c", "b"), ("c", "d")])
        assert analyzer.detect_cycles(graph.nodes, graph.edges) == ["b", "c"]

    def test_self_loop(self, graph_factory):
        graph = graph_factory(["a", "b"], [("a", "b"), ("b", "b")])
        assert analyzer.detect_cycles(graph.nodes, graph.edges) == ["b"]

    def test_edges_to_missing_nodes_are_ignored(self, graph_factory):
        graph = graph_factory(["a", "b"], [("a", "b"), ("b", "ghost")])
        assert analyzer.detect_cycles(graph.nodes, graph.edges) == []
        assert analyzer.build_dependency_map(graph.nodes, graph.edges) == {"a": [], "b": ["a"]}


class TestReachability:
    def test_all_nodes_of_a_dag_are_reachable(self, diamond_graph):
        assert analyzer.find_unreachable(diamond_graph.nodes, diamond_graph.edges) == []

    def test_detached_cycle_is_unreachable(self, graph_factory):
        graph = graph_factory(["a", "b", "c", "d"], [("a", "b"), ("c", "d"), ("d", "c")])
        assert analyzer.find_unreachable(graph.nodes, graph.edges) == ["c", "d"]


class TestParallelGroups:
    def test_chain_has_no_groups(self, chain_graph):
        assert analyzer.identify_parallel_groups(chain_graph.nodes, chain_graph.edges) == []

    def test_diamond_branches_share_a_group(self, diamond_graph):
        groups = analyzer.identify_parallel_groups(diamond_graph.nodes, diamond_graph.edges)
        assert groups == [["A", "B"]]

    def test_unsafe_nodes_never_group(self, diamond_graph):
        groups = analyzer.identify_parallel_groups(
            diamond_graph.nodes, diamond_graph.edges, is_parallel_safe=lambda node: node.id != "B"
        )
        assert groups == []

    def test_different_dependencies_split_groups(self, graph_factory):
        graph = graph_factory(
            ["r1", "r2", "a", "b", "c"],
            [("r1", "a"), ("r1", "b"), ("r2", "c")],
        )
        groups = analyzer.identify_parallel_groups(graph.nodes, graph.edges)
        assert groups == [["r1", "r2"], ["a", "b"]]

    def test_group_members_have_identical_dependencies_and_no_ancestry(self, graph_factory):
        graph = graph_factory(
            ["s", "a", "b", "c", "d", "e"],
            [("s", "a"), ("s", "b"), ("s", "c"), ("a", "d"), ("b", "d"), ("c", "e")],
        )
        deps = analyzer.build_dependency_map(graph.nodes, graph.edges)
        ancestors = analyzer.build_ancestor_map(graph.nodes, graph.edges)
        for group in analyzer.identify_parallel_groups(graph.nodes, graph.edges):
            assert len(group) >= 2
            for m in group:
                assert set(deps[m]) == set(deps[group[0]])
                for other in group:
                    assert other not in ancestors[m]


class TestCriticalPath:
    def test_heaviest_branch_wins(self, diamond_graph):
        cost_fn = costs({"A": 5.0, "B": 2.0})
        path = analyzer.critical_path(diamond_graph.nodes, diamond_graph.edges, cost_fn)
        assert path == ["input", "A", "merge"]
        assert analyzer.path_cost(path, diamond_graph.nodes, cost_fn) == 7.0

    def test_ties_go_to_the_earliest_declared_node(self, diamond_graph):
        path = analyzer.critical_path(diamond_graph.nodes, diamond_graph.edges)
        assert path == ["input", "A", "merge"]

    def test_path_times_accumulate_the_slowest_dependency(self, diamond_graph):
        times = analyzer.path_times(diamond_graph.nodes, diamond_graph.edges, costs({"B": 3.0}))
        assert times == {"input": 1.0, "A": 2.0, "B": 4.0, "merge": 5.0}

    def test_critical_path_is_at_least_as_heavy_as_every_path(self, graph_factory):
        graph = graph_factory(
            ["a", "b", "c", "d", "e", "f", "g"],
            [("a", "c"), ("b", "c"), ("a", "d"), ("c", "e"), ("d", "e"), ("d", "f"), ("b", "f"), ("e", "g"), ("f", "g")],
        )
        cost_fn = costs({"a": 2.0, "b": 6.0, "c": 1.0, "d": 4.0, "e": 3.0, "f": 0.5, "g": 1.5})
        dependents = analyzer.build_dependents_map(graph.nodes, graph.edges)

        def walk(path):
            if not dependents[path[-1]]:
                yield path
            for nxt in dependents[path[-1]]:
                yield from walk(path + [nxt])

        every_path = [p for entry in graph.entry_nodes() for p in walk([entry])]
        assert len(every_path) == 5

        best = analyzer.critical_path(graph.nodes, graph.edges, cost_fn)
        best_cost = analyzer.path_cost(best, graph.nodes, cost_fn)
        assert best in every_path
        for path in every_path:
            assert best_cost >= analyzer.path_cost(path, graph.nodes, cost_fn)
        assert best == ["b", "c", "e", "g"]
        assert best_cost == 11.5

    def test_negative_or_missing_cost_falls_back_to_default(self, chain_graph):
        cost_fn = costs({"input": -4.0, "transform": None}, default=2.0)
        assert analyzer.path_times(chain_graph.nodes, chain_graph.edges, cost_fn)["output"] == 4.0

    def test_empty_graph(self):
        assert analyzer.critical_path([], []) == []


class TestAnalyzeGraph:
    def test_acyclic_summary(self, diamond_graph):
        result = analyzer.analyze_graph(diamond_graph)
        assert result.is_acyclic
        assert result.entry_nodes == ["input"]
        assert result.sink_nodes == ["merge"]
        assert result.topological_order == ["input", "A", "B", "merge"]
        assert result.parallel_groups == [["A", "B"]]
        assert result.critical_path_cost == 3.0
        assert result.warnings == []

    def test_cycles_are_reported_not_raised(self, graph_factory):
        graph = graph_factory(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "b")])
        result = analyzer.analyze_graph(graph)
        assert not result.is_acyclic
        assert result.cycle == ["b", "c"]
        assert result.topological_order == []
        assert any("cycle" in w for w in result.warnings)
        assert result.to_dict()["is_acyclic"] is False

    def test_unreachable_nodes_produce_warnings(self, graph_factory):
        graph = graph_factory(["a", "x", "y"], [("x", "y"), ("y", "x")])
        result = analyzer.analyze_graph(graph)
        assert result.unreachable == ["x", "y"]
        assert "node 'x' is unreachable from any entry node" in result.warnings
