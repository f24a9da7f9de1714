"""Tests for flattening multi-node results."""

from graphpipe.core.combine import combine_results, display_name
from graphpipe.core.nodes import DerivedNode, SqlNode
from graphpipe.core.plan import ExecutionPlan, ExecutionStep
from graphpipe.core.result import ExecutionResult, NodeResult


def make_result(nodes, results) -> ExecutionResult:
    plan = ExecutionPlan(
        steps=[ExecutionStep(node=n, stage=0) for n in nodes],
        stages=[[n.ref_id for n in nodes]],
    )
    return ExecutionResult(plan=plan, results={r.ref_id: r for r in results})


class TestDisplayName:
    """Test output column naming."""

    def test_named_pair(self):
        """Test a key/value pair takes the node name."""
        assert display_name("A", "revenue", "Revenue", 2) == "Revenue"

    def test_unnamed_pair(self):
        """Test unnamed nodes are prefixed with the refId."""
        assert display_name("A", "revenue", None, 2) == "A_revenue"

    def test_wide_result(self):
        """Test wide results keep their column names."""
        assert display_name("A", "revenue", "Revenue", 3) == "revenue"


class TestCombineResults:
    """Test merging on the first column."""

    def test_merge_on_timestamps(self):
        """Test keys are unioned, ordered in time, and gaps are null."""
        nodes = [
            SqlNode(ref_id="A", text="SELECT 1", name="Revenue"),
            SqlNode(ref_id="B", text="SELECT 1"),
        ]
        results = [
            NodeResult(
                ref_id="A",
                columns=["day", "revenue"],
                rows=[{"day": "2024-01-02", "revenue": 5}, {"day": "2024-01-01", "revenue": 3}],
            ),
            NodeResult(ref_id="B", columns=["day", "orders"], rows=[{"day": "2024-01-03", "orders": 1}]),
        ]
        combined = combine_results(make_result(nodes, results))

        assert combined.columns == ["day", "Revenue", "B_orders"]
        assert combined.rows == [
            {"day": "2024-01-01", "Revenue": 3, "B_orders": None},
            {"day": "2024-01-02", "Revenue": 5, "B_orders": None},
            {"day": "2024-01-03", "Revenue": None, "B_orders": 1},
        ]

    def test_hidden_nodes_skipped(self):
        """Test hidden nodes are not flattened."""
        nodes = [
            SqlNode(ref_id="A", text="SELECT 1", hidden=True),
            DerivedNode(ref_id="B", operation="math", expression="A * 2"),
        ]
        results = [
            NodeResult(ref_id="A", columns=["k", "v"], rows=[{"k": "x", "v": 1}]),
            NodeResult(ref_id="B", columns=["k", "value"], rows=[{"k": "x", "value": 2}]),
        ]
        combined = combine_results(make_result(nodes, results))
        assert combined.columns == ["k", "B_value"]
        assert combined.rows == [{"k": "x", "B_value": 2}]

    def test_all_hidden(self):
        """Test an empty table when nothing is visible."""
        nodes = [SqlNode(ref_id="A", text="SELECT 1", hidden=True)]
        results = [NodeResult(ref_id="A", columns=["k"], rows=[{"k": 1}])]
        combined = combine_results(make_result(nodes, results))
        assert combined.columns == []
        assert combined.rows == []
