import pytest

from dbpulse.core.errors import BackendError
from dbpulse.services import explain


class FakeConnection:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.statements = []
        self.rolled_back = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement):
        self.statements.append(str(statement))
        if self.error:
            raise self.error
        return self

    def scalar_one(self):
        return self.result

    def rollback(self):
        self.rolled_back = True


class FakeEngine:
    def __init__(self, conn):
        self.conn = conn

    def connect(self):
        return self.conn


@pytest.mark.parametrize(
    "query, expected",
    [
        ("SELECT 1", "SELECT 1"),
        ("  SELECT 1;  ", "SELECT 1"),
        ("SELECT 1;;", "SELECT 1"),
    ],
)
def test_clean_statement(query, expected):
    assert explain.clean_statement(query) == expected


@pytest.mark.parametrize("query", ["", "  ; ", "SELECT 1; SELECT 2"])
def test_clean_statement_rejects(query):
    with pytest.raises(ValueError):
        explain.clean_statement(query)


def test_explain_sql_options():
    assert explain.explain_sql("SELECT 1", False) == "EXPLAIN (FORMAT JSON) SELECT 1"
    assert explain.explain_sql("SELECT 1", True) == "EXPLAIN (FORMAT JSON, ANALYZE, BUFFERS) SELECT 1"


def test_explain_query_rolls_back_and_attaches_query(monkeypatch):
    conn = FakeConnection(result=[{"Plan": {"Node Type": "Result"}, "Execution Time": 0.1}])
    monkeypatch.setattr(explain, "get_engine", lambda server_id: FakeEngine(conn))

    document = explain.explain_query("srv1", "DELETE FROM logs;", analyze=True)

    assert conn.statements == ["EXPLAIN (FORMAT JSON, ANALYZE, BUFFERS) DELETE FROM logs"]
    assert conn.rolled_back
    assert document[0]["Query Text"] == "DELETE FROM logs"


def test_explain_query_accepts_json_text(monkeypatch):
    conn = FakeConnection(result='[{"Plan": {"Node Type": "Result"}}]')
    monkeypatch.setattr(explain, "get_engine", lambda server_id: FakeEngine(conn))
    assert explain.explain_query("srv1", "SELECT 1")[0]["Plan"]["Node Type"] == "Result"


def test_explain_query_failure_is_backend_error(monkeypatch):
    conn = FakeConnection(error=RuntimeError('relation "nope" does not exist'))
    monkeypatch.setattr(explain, "get_engine", lambda server_id: FakeEngine(conn))

    with pytest.raises(BackendError, match="Failed to explain query: relation"):
        explain.explain_query("srv1", "SELECT * FROM nope")
    assert conn.rolled_back


def test_analyze_plan_renders(monkeypatch):
    raw = [
        {
            "Plan": {"Node Type": "Result", "Startup Cost": 0.0, "Total Cost": 0.01, "Plan Rows": 1, "Plan Width": 4},
            "Planning Time": 0.02,
        }
    ]
    monkeypatch.setattr(explain, "explain_query", lambda server_id, query, analyze: raw)
    rendered = explain.analyze_plan("srv1", "SELECT 1")
    assert rendered["mode"] == "EXPLAIN"
    assert rendered["rows"][0]["node_type"] == "Result"
