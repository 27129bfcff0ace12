import random
from types import MappingProxyType

import pytest

from agentflow.compiler.ir import (
    Branch,
    JoinStrategy,
    Leaf,
    Loop,
    LoopKind,
    Parallel,
    Sequence,
    Switch,
    describe,
    leaf_ids,
    walk,
)
from agentflow.compiler.resolver import Resolver, resolve
from agentflow.compiler.validator import validate_graph
from agentflow.core.GraphPrimitives import Edge, Graph, Node
from agentflow.core.Types import NodeKind
from agentflow.errors import CompilerInternalError


def node(nid, kind, **config):
    return Node(nid, kind, MappingProxyType(config))


def agent(nid):
    return node(nid, NodeKind.AGENT, instruction=f"do {nid}")


def build(nodes, edges):
    result = validate_graph(Graph(nodes, edges))
    assert result.ok, [str(d) for d in result.errors]
    return resolve(result.validated)


class TestLinear:

    def test_chain_without_input_node(self):
        root = build(
            [agent("a"), agent("b"), agent("c")],
            [Edge("e1", "a", "b"), Edge("e2", "b", "c")],
        )
        assert describe(root) == "Sequence[Leaf(a), Leaf(b), Leaf(c)]"

    def test_input_agent_output(self):
        root = build(
            [
                node("in", NodeKind.INPUT, name="UserText"),
                node("ag", NodeKind.AGENT, name="Summarizer", instruction="Summarize input"),
                node("out", NodeKind.OUTPUT, name="Result"),
            ],
            [Edge("e1", "in", "ag"), Edge("e2", "ag", "out")],
        )
        assert describe(root) == "Sequence[Leaf(in), Leaf(ag), Leaf(out)]"
        assert isinstance(root, Sequence)
        assert root.container is None

    def test_empty_graph(self):
        assert describe(build([], [])) == "Sequence[]"

    def test_node_order_in_document_does_not_matter(self):
        nodes = [node("in", NodeKind.INPUT), agent("a"), agent("b"), node("out", NodeKind.OUTPUT)]
        edges = [Edge("e1", "in", "a"), Edge("e2", "a", "b"), Edge("e3", "b", "out")]
        expected = describe(build(nodes, edges))

        rng = random.Random(7)
        for _ in range(5):
            shuffled_nodes, shuffled_edges = nodes[:], edges[:]
            rng.shuffle(shuffled_nodes)
            rng.shuffle(shuffled_edges)
            assert describe(build(shuffled_nodes, shuffled_edges)) == expected

    def test_fan_out_outside_parallel_follows_edge_id_order(self):
        root = build(
            [node("in", NodeKind.INPUT), agent("a"), agent("b")],
            [Edge("e2", "in", "a"), Edge("e1", "in", "b")],
        )
        assert describe(root) == "Sequence[Leaf(in), Leaf(b), Leaf(a)]"


class TestFanOutDiamond:

    @pytest.fixture
    def nodes(self):
        return [node("in", NodeKind.INPUT), agent("a"), agent("b"), agent("c"), agent("d")]

    def test_merge_follows_every_producer_once(self, nodes):
        root = build(
            nodes,
            [
                Edge("e1", "in", "a"),
                Edge("e2", "a", "b"),
                Edge("e3", "a", "c"),
                Edge("e4", "b", "d"),
                Edge("e5", "c", "d"),
            ],
        )
        assert describe(root) == "Sequence[Leaf(in), Leaf(a), Leaf(b), Leaf(c), Sequence[Leaf(d)]]"
        shared = root.items[-1]
        assert shared.key == "d"
        assert [item for item in root.items if item is shared] == [shared]

    def test_merge_inside_a_conditional_arm(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("c", NodeKind.CONDITIONAL, condition="ready", terminatedPorts=["false"]),
                agent("x"),
                agent("y"),
                agent("d"),
            ],
            [
                Edge("e1", "in", "c"),
                Edge("e2", "c", "x", "true"),
                Edge("e3", "c", "y", "true"),
                Edge("e4", "x", "d"),
                Edge("e5", "y", "d"),
            ],
        )
        assert describe(root.items[1]) == (
            "Branch(c)[true=Sequence[Leaf(x), Leaf(y), Sequence[Leaf(d)]], false=Sequence[]]"
        )

    def test_merge_reached_from_two_entries(self):
        root = build(
            [node("in1", NodeKind.INPUT), node("in2", NodeKind.INPUT), agent("d")],
            [Edge("e1", "in1", "d"), Edge("e2", "in2", "d")],
        )
        assert describe(root) == "Sequence[Leaf(in1), Leaf(in2), Sequence[Leaf(d)]]"


class TestSequential:

    def test_sequential_container_wraps_its_chain(self):
        root = build(
            [node("in", NodeKind.INPUT), node("s", NodeKind.SEQUENTIAL), agent("a"), agent("b")],
            [Edge("e1", "in", "s"), Edge("e2", "s", "a"), Edge("e3", "a", "b")],
        )
        assert describe(root) == "Sequence[Leaf(in), Sequential(s)[Leaf(a), Leaf(b)]]"
        assert root.items[1].container.id == "s"


class TestParallel:

    @pytest.fixture
    def diamond(self):
        nodes = [
            node("in", NodeKind.INPUT),
            node("fan", NodeKind.PARALLEL, name="Fan"),
            agent("p1"),
            agent("p2"),
            agent("d"),
            node("out", NodeKind.OUTPUT),
        ]
        edges = [
            Edge("e1", "in", "fan"),
            Edge("e2", "fan", "p1", "out1"),
            Edge("e3", "fan", "p2", "out2"),
            Edge("e4", "p1", "d"),
            Edge("e5", "p2", "d"),
            Edge("e6", "d", "out"),
        ]
        return build(nodes, edges)

    def test_diamond_shares_the_merge_chain(self, diamond):
        parallel = diamond.items[1]
        assert isinstance(parallel, Parallel)
        assert parallel.join_strategy is JoinStrategy.WAIT_FOR_ALL

        first, second = parallel.members
        assert describe(first) == "Sequence[Leaf(p1), Sequence[Leaf(d), Leaf(out)]]"
        assert describe(second) == "Sequence[Leaf(p2), Sequence[Leaf(d), Leaf(out)]]"
        assert first.items[1] is second.items[1]
        assert first.items[1].key == "d"

    def test_shared_block_is_walked_once(self, diamond):
        assert leaf_ids(diamond) == ["in", "p1", "d", "out", "p2"]
        blocks = list(walk(diamond))
        assert len(blocks) == len({id(b) for b in blocks})

    def test_race_with_single_node_members(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("fan", NodeKind.PARALLEL, joinStrategy="race"),
                agent("a"),
                agent("b"),
            ],
            [Edge("e1", "in", "fan"), Edge("e2", "fan", "a", "out1"), Edge("e3", "fan", "b", "out2")],
        )
        parallel = root.items[1]
        assert describe(parallel) == "Parallel(fan, race)[Leaf(a), Leaf(b)]"
        assert parallel.join_strategy is JoinStrategy.RACE


class TestBranching:

    def test_conditional_with_empty_false_arm(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("c", NodeKind.CONDITIONAL, condition="score > 5"),
                agent("yes"),
            ],
            [Edge("e1", "in", "c"), Edge("e2", "c", "yes", "true")],
        )
        branch = root.items[1]
        assert isinstance(branch, Branch)
        assert branch.condition == "score > 5"
        assert branch.outcome_port is None
        assert describe(branch) == "Branch(c)[true=Sequence[Leaf(yes)], false=Sequence[]]"

    def test_router_routes_follow_port_index(self):
        rules = [{"condition": "billing"}, {"condition": "tech"}, {"condition": "other"}]
        root = build(
            [node("in", NodeKind.INPUT), node("r", NodeKind.ROUTER, routingRules=rules),
             agent("a"), agent("b"), agent("c")],
            [
                Edge("e1", "in", "r"),
                Edge("e2", "r", "c", "route2"),
                Edge("e3", "r", "a", "route0"),
                Edge("e4", "r", "b", "route1"),
            ],
        )
        switch = root.items[1]
        assert isinstance(switch, Switch)
        assert [(r.port, r.label) for r in switch.routes] == [
            ("route0", "billing"), ("route1", "tech"), ("route2", "other"),
        ]
        assert [leaf_ids(r.block) for r in switch.routes] == [["a"], ["b"], ["c"]]

    def test_api_call_with_error_edge_gets_outcome_branch(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("api", NodeKind.API_CALL, apiUrl="https://example.com"),
                agent("ok"),
                agent("fail"),
            ],
            [Edge("e1", "in", "api"), Edge("e2", "api", "ok", "success"), Edge("e3", "api", "fail", "error")],
        )
        assert describe(root) == (
            "Sequence[Leaf(in), Leaf(api), "
            "Branch(api)[true=Sequence[Leaf(ok)], false=Sequence[Leaf(fail)]]]"
        )
        outcome = root.items[2]
        assert outcome.outcome_port == "success"
        assert outcome.key == "api#outcome"

    def test_api_call_without_error_edge_is_a_plain_step(self):
        root = build(
            [node("in", NodeKind.INPUT), node("api", NodeKind.API_CALL, apiUrl="https://x"), agent("ok")],
            [Edge("e1", "in", "api"), Edge("e2", "api", "ok")],
        )
        assert describe(root) == "Sequence[Leaf(in), Leaf(api), Leaf(ok)]"


class TestLoop:

    def test_body_and_exit(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("loop", NodeKind.LOOP, loopCount=3),
                agent("a"),
                agent("b"),
                agent("c"),
                node("out", NodeKind.OUTPUT),
            ],
            [
                Edge("e1", "in", "loop"),
                Edge("e2", "loop", "a", "loop"),
                Edge("e3", "a", "b"),
                Edge("e4", "b", "c"),
                Edge("e5", "c", "loop"),
                Edge("e6", "loop", "out", "exit"),
            ],
        )
        assert describe(root) == (
            "Sequence[Leaf(in), Loop(loop, fixed-count)[Sequence[Leaf(a), Leaf(b), Leaf(c)]], Leaf(out)]"
        )
        loop = root.items[1]
        assert isinstance(loop, Loop)
        assert loop.loop_kind is LoopKind.FIXED_COUNT
        assert loop.params == {"count": 3}

    def test_while_loop_params(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("loop", NodeKind.LOOP, loopType="while", loopCondition="pending", maxIterations=5),
                agent("a"),
            ],
            [Edge("e1", "in", "loop"), Edge("e2", "loop", "a", "loop"), Edge("e3", "a", "loop")],
        )
        loop = root.items[1]
        assert loop.loop_kind is LoopKind.WHILE
        assert loop.params == {"condition": "pending", "max_iterations": 5}
        assert describe(loop.body) == "Sequence[Leaf(a)]"

    def test_nested_loops(self):
        root = build(
            [
                node("in", NodeKind.INPUT),
                node("l1", NodeKind.LOOP, loopCount=2),
                node("l2", NodeKind.LOOP, loopType="for-each", loopItems="rows"),
                agent("a"),
                agent("b"),
                node("out", NodeKind.OUTPUT),
            ],
            [
                Edge("e1", "in", "l1"),
                Edge("e2", "l1", "l2", "loop"),
                Edge("e3", "l2", "a", "loop"),
                Edge("e4", "a", "l2"),
                Edge("e5", "l2", "b", "exit"),
                Edge("e6", "b", "l1"),
                Edge("e7", "l1", "out", "exit"),
            ],
        )
        assert describe(root) == (
            "Sequence[Leaf(in), Loop(l1, fixed-count)["
            "Sequence[Loop(l2, for-each)[Sequence[Leaf(a)]], Leaf(b)]"
            "], Leaf(out)]"
        )
        assert root.items[1].body.items[0].params == {"items": "rows"}


class TestResolverGuards:

    def test_unvalidated_graph_is_rejected(self):
        with pytest.raises(CompilerInternalError):
            Resolver(Graph([agent("a")]))

    def test_fresh_blocks_per_resolution(self):
        result = validate_graph(Graph([agent("a")]))
        first = Resolver(result.validated).resolve()
        second = Resolver(result.validated).resolve()
        assert describe(first) == describe(second)
        assert first is not second
        assert isinstance(first.items[0], Leaf)
