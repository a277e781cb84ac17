"""Tests for the WORKFLOW_ENGINE_TRACE decorator."""

from uuid import UUID

from workflow_engines.approval_chain import resolve_next
from workflow_engines.tracer import compute_input_fingerprint
from workflow_kernel.domain.subject import WorkflowSubject

SUBJECT = WorkflowSubject(subject_id=UUID("00000000-0000-0000-0000-000000000001"))


class TestFingerprint:

    def test_deterministic(self):
        args = {"a": {"y": 2, "x": 1}, "b": frozenset({"q", "p"})}
        assert compute_input_fingerprint(("a", "b"), args) == compute_input_fingerprint(
            ("a", "b"), {"b": frozenset({"p", "q"}), "a": {"x": 1, "y": 2}}
        )

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("a",), {}) == compute_input_fingerprint(
            ("a",), {"a": None}
        )

    def test_length(self):
        assert len(compute_input_fingerprint(("a",), {"a": 1})) == 16


class TestTracedEngine:

    def test_emits_trace_record(self, captured_logs):
        resolve_next(SUBJECT, ())
        traces = [r for r in captured_logs() if r["message"] == "WORKFLOW_ENGINE_TRACE"]
        assert traces
        trace = traces[-1]
        assert trace["engine_name"] == "approval_chain"
        assert trace["engine_version"] == "1.0"
        assert trace["function"] == "resolve_next"
        assert len(trace["input_fingerprint"]) == 16

    def test_same_inputs_same_fingerprint(self, captured_logs):
        resolve_next(SUBJECT, ())
        resolve_next(SUBJECT, ())
        traces = [r for r in captured_logs() if r["message"] == "WORKFLOW_ENGINE_TRACE"]
        assert traces[-1]["input_fingerprint"] == traces[-2]["input_fingerprint"]
