import json

import pytest

from dbpulse.analysis import derive_metrics, normalize
from dbpulse.analysis.normalize import missing_statistics_notice
from dbpulse.core.errors import MalformedPlanError
from tests.conftest import measured, plan_node


def _document(root, **extra):
    return [{"Plan": root, **extra}]


def test_estimate_only_plan_has_no_actual_fields():
    root = plan_node("Hash Join", cost=250.0, children=[plan_node(cost=100.0), plan_node(cost=120.0)])
    plan = normalize(_document(root, **{"Planning Time": 0.2}), query="SELECT 1")

    assert plan.query == "SELECT 1"
    assert not plan.is_measured
    assert plan.total_cost == 250.0
    assert all(node.actual is None for node in plan.nodes())
    assert all(node.actual_total_time is None for node in plan.nodes())
    assert derive_metrics(plan).max_time is None


def test_measured_plan_keeps_actual_group():
    root = plan_node("Seq Scan", **measured(4.5, 90, loops=2))
    plan = normalize(_document(root, **{"Planning Time": 0.1, "Execution Time": 9.2}))

    assert plan.is_measured
    assert plan.root.actual.total_time == 4.5
    assert plan.root.actual_loops == 2
    assert plan.execution_time == 9.2


def test_partial_actual_group_is_dropped():
    root = plan_node(**{"Actual Total Time": 3.0, "Actual Rows": 10})
    plan = normalize(_document(root))
    assert plan.root.actual is None


def test_children_keep_input_order_and_depth():
    root = plan_node(
        "Nested Loop",
        children=[
            plan_node("Index Scan", **{"Index Name": "users_pkey"}),
            plan_node("Materialize", children=[plan_node("Seq Scan", **{"Relation Name": "orders"})]),
        ],
    )
    plan = normalize(_document(root))
    walked = [(depth, node.node_type) for depth, node in plan.root.walk()]
    assert walked == [(0, "Nested Loop"), (1, "Index Scan"), (1, "Materialize"), (2, "Seq Scan")]
    assert plan.root.children[0].object_name == "users_pkey"


def test_accepts_json_text_and_bare_document():
    root = plan_node("Result", cost=0.01)
    from_text = normalize(json.dumps(_document(root, **{"Query Text": "SELECT 1"})))
    from_dict = normalize({"Plan": root})

    assert from_text.query == "SELECT 1"
    assert from_text.root == from_dict.root


def test_input_is_not_modified():
    raw = _document(plan_node(children=[plan_node()]))
    before = json.dumps(raw, sort_keys=True)
    normalize(raw)
    assert json.dumps(raw, sort_keys=True) == before


def test_missing_root_raises():
    with pytest.raises(MalformedPlanError, match="missing root node"):
        normalize([{"Planning Time": 0.1}])


def test_missing_estimate_field_reports_path():
    broken = plan_node()
    del broken["Total Cost"]
    root = plan_node("Hash Join", children=[plan_node(), broken])

    with pytest.raises(MalformedPlanError) as excinfo:
        normalize(_document(root))
    assert excinfo.value.path == "Plan.Plans[1]"
    assert "Total Cost" in str(excinfo.value)


@pytest.mark.parametrize("value", ["12", None, True])
def test_non_numeric_estimate_rejected(value):
    with pytest.raises(MalformedPlanError):
        normalize(_document(plan_node(**{"Plan Rows": value})))


@pytest.mark.parametrize("raw", ["not json", [], 42, [{"Plan": {"Startup Cost": 1}}]])
def test_malformed_documents_rejected(raw):
    with pytest.raises(MalformedPlanError):
        normalize(raw)


def test_cycle_is_rejected():
    root = plan_node()
    root["Plans"] = [root]
    with pytest.raises(MalformedPlanError, match="own ancestor"):
        normalize(_document(root))


@pytest.mark.parametrize("value", [5, {"key": "id"}, ["id", 3]])
def test_bad_sort_key_rejected(value):
    child = plan_node("Sort", **{"Sort Key": value})
    with pytest.raises(MalformedPlanError, match="'Sort Key'") as excinfo:
        normalize(_document(plan_node("Limit", children=[child])))
    assert excinfo.value.path == "Plan.Plans[0]"


def test_sort_key_string_or_list_accepted():
    plan = normalize(_document(plan_node("Sort", **{"Sort Key": "created_at"})))
    assert plan.root.sort_keys == ("created_at",)
    plan = normalize(_document(plan_node("Sort", **{"Sort Key": ["a", "b DESC"]})))
    assert plan.root.sort_keys == ("a", "b DESC")


def test_deeply_nested_plan_is_normalized():
    depth = 5000
    root = plan_node("Result")
    node = root
    for _ in range(depth - 1):
        child = plan_node("Result")
        node["Plans"] = [child]
        node = child

    plan = normalize(_document(root))
    assert sum(1 for _ in plan.nodes()) == depth
    assert max(level for level, _ in plan.root.walk()) == depth - 1


def test_large_seq_scan_warning():
    plan = normalize(_document(plan_node("Seq Scan", rows=50_000, **{"Relation Name": "events"})))
    assert plan.root.warnings == ("Sequential scan on events reads 50.0K rows; consider an index",)
    assert plan.warnings == plan.root.warnings


def test_small_seq_scan_has_no_warning():
    plan = normalize(_document(plan_node("Seq Scan", rows=10_000)))
    assert plan.warnings == ()


def test_disk_sort_and_hash_batches_warn():
    root = plan_node(
        "Sort",
        children=[plan_node("Hash", **{"Hash Batches": 4})],
        **{"Sort Space Type": "Disk", "Sort Space Used": 2048},
    )
    plan = normalize(_document(root))

    assert plan.root.warnings == ("Sort spilled to disk (2048 kB); consider raising work_mem",)
    assert plan.root.children[0].warnings == ("Hash split into 4 batches; consider raising work_mem",)
    assert plan.warnings == plan.root.warnings + plan.root.children[0].warnings


def test_raw_warnings_are_preserved_before_derived_ones():
    root = plan_node("Seq Scan", rows=20_000, Warnings=["custom node warning"])
    plan = normalize(_document(root, Warnings=["document warning"]))
    assert plan.root.warnings[0] == "custom node warning"
    assert plan.warnings[-1] == "document warning"


def test_row_mismatch_adds_missing_statistics_notice():
    child = plan_node("Index Scan", rows=10, **measured(0.5, 5000))
    root = plan_node("Limit", rows=10, children=[child], **measured(0.6, 10))
    plan = normalize(_document(root, **{"Execution Time": 0.7}))

    assert plan.warnings[-1] == missing_statistics_notice(1)
    assert plan.warnings[-1].startswith("Row estimates are off by more than 10x on 1 node(s)")
