"""Tests for fw_common.errors and fw_common.response."""

from src.fw_common.errors import (
    AlreadyResolvedError,
    AppError,
    AuthenticationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    JobNotFoundError,
    NotAssignedError,
)
from src.fw_common.response import ApiResponse, error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500
        assert err.error == "INTERNAL"

    def test_is_exception(self) -> None:
        assert isinstance(AppError(code=1, message="x"), Exception)


class TestSpecificErrors:
    def test_authentication(self) -> None:
        err = AuthenticationError()
        assert (err.code, err.http_status, err.error) == (1001, 401, "UNAUTHORIZED")

    def test_not_assigned(self) -> None:
        err = NotAssignedError("job-1")
        assert err.http_status == 403
        assert err.error == "NOT_ASSIGNED"

    def test_job_not_found(self) -> None:
        err = JobNotFoundError("job-1")
        assert err.code == 2001
        assert err.http_status == 404

    def test_invalid_transition_names_both_states(self) -> None:
        err = InvalidTransitionError("accepted", "completed")
        assert err.http_status == 409
        assert "accepted" in err.message
        assert "completed" in err.message

    def test_insufficient_balance(self) -> None:
        err = InsufficientBalanceError(required=50000, available=12000)
        assert err.http_status == 422
        assert "50000" in err.message
        assert "12000" in err.message

    def test_already_resolved(self) -> None:
        err = AlreadyResolvedError("disp-1", "resolved_fundi")
        assert err.error == "ALREADY_RESOLVED"
        assert err.http_status == 409


class TestApiResponse:
    def test_success(self) -> None:
        resp = success_response({"id": "job-1"})
        assert resp.code == 0
        assert resp.error is None
        assert resp.data == {"id": "job-1"}
        assert resp.request_id.startswith("req_")

    def test_error(self) -> None:
        resp = error_response(2002, "Cannot move job", "INVALID_TRANSITION")
        assert resp.code == 2002
        assert resp.error == "INVALID_TRANSITION"
        assert resp.data is None

    def test_serializes(self) -> None:
        dumped = ApiResponse(data=[1, 2]).model_dump()
        assert set(dumped) == {"code", "message", "error", "data", "timestamp", "request_id"}
