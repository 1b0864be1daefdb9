"""Tests for error handling classes."""

import pytest

from openzt_manager.core.errors import (
    CapacityExceededError,
    ContainerNotFoundError,
    ControlPlaneError,
    ErrorCode,
    ExhaustedRangeError,
    InvalidConfigError,
    InvalidTransitionError,
    ManagerError,
    NotFoundError,
    ResourceConflictError,
    RuntimeOperationError,
    RuntimeUnavailableError,
)


class TestErrorMapping:
    """Each error carries the right code and HTTP status."""

    @pytest.mark.parametrize(
        ("exc", "code", "status"),
        [
            (InvalidConfigError(), ErrorCode.INVALID_CONFIG, 400),
            (NotFoundError(), ErrorCode.INSTANCE_NOT_FOUND, 404),
            (InvalidTransitionError(), ErrorCode.INVALID_STATE, 409),
            (CapacityExceededError(), ErrorCode.CAPACITY_EXCEEDED, 503),
            (ExhaustedRangeError("rdp"), ErrorCode.PORTS_EXHAUSTED, 503),
            (RuntimeUnavailableError(), ErrorCode.RUNTIME_UNAVAILABLE, 503),
            (ContainerNotFoundError(), ErrorCode.CONTAINER_NOT_FOUND, 404),
            (ResourceConflictError(), ErrorCode.RESOURCE_CONFLICT, 409),
            (RuntimeOperationError("boom"), ErrorCode.RUNTIME_ERROR, 502),
        ],
    )
    def test_code_and_status(
        self, exc: ManagerError, code: ErrorCode, status: int
    ) -> None:
        assert exc.code == code
        assert exc.status_code == status
        assert isinstance(exc, ManagerError)


class TestControlPlaneErrors:
    """Tests for the control-plane error family."""

    @pytest.mark.parametrize(
        "exc",
        [
            RuntimeUnavailableError(),
            ContainerNotFoundError(),
            ResourceConflictError(),
            RuntimeOperationError("boom"),
        ],
    )
    def test_inherit_control_plane_error(self, exc: ManagerError) -> None:
        assert isinstance(exc, ControlPlaneError)

    def test_operation_error_keeps_detail(self) -> None:
        exc = RuntimeOperationError("no such image: finn/winezt:latest")
        assert exc.detail == "no such image: finn/winezt:latest"
        assert "no such image" in exc.message


class TestExhaustedRangeError:
    """Tests for ExhaustedRangeError."""

    def test_default_message_names_range(self) -> None:
        exc = ExhaustedRangeError("console")
        assert exc.range_name == "console"
        assert exc.message == "No console ports available"

    def test_to_response(self) -> None:
        """to_response() should return ErrorResponse with correct fields."""
        resp = ExhaustedRangeError("rdp").to_response()

        assert resp.error.code == "PORTS_EXHAUSTED"
        assert resp.error.message == "No rdp ports available"
        assert resp.model_dump() == {
            "error": {"code": "PORTS_EXHAUSTED", "message": "No rdp ports available"}
        }
