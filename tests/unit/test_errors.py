from launchgrid.errors import (
    ConflictError,
    GenerationFailed,
    NotFoundError,
    UnsupportedStepType,
    WorkflowError,
    format_error_response,
    normalize_error,
)


def test_error_codes_and_status():
    assert NotFoundError("Task", "t1").status_code == 404
    assert NotFoundError("Task", "t1").message == "Task t1 not found"
    assert ConflictError("raced").retryable
    assert GenerationFailed("timeout").code == "GENERATION_FAILED"
    assert GenerationFailed("timeout").status_code == 502
    assert UnsupportedStepType("TELEPORT").message == "Unsupported step type: TELEPORT"


def test_workflow_error_exposes_blocking_steps():
    error = WorkflowError("blocked", workflow_id="wf", blocked_by=["s1"])
    assert error.blocked_by == ["s1"]
    assert error.to_dict() == {
        "code": "WORKFLOW_ERROR",
        "message": "blocked",
        "details": {"workflow_id": "wf", "blocked_by": ["s1"]},
    }


def test_unexpected_errors_are_hidden():
    error = normalize_error(KeyError("secret_column"))
    assert error.code == "INTERNAL_ERROR"
    assert "secret_column" not in error.message

    body = format_error_response(RuntimeError("db password=hunter2"))
    assert body == {
        "success": False,
        "error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
    }


def test_known_errors_keep_their_details():
    body = format_error_response(NotFoundError("Workflow", "wf-1"))
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["error"]["details"] == {"resource": "Workflow", "id": "wf-1"}
