"""Tests for error handling classes."""

import pytest

from skyport.core.errors import (
    ErrorCode,
    ForbiddenError,
    InstanceNotFoundError,
    InstanceSuspendedError,
    NodeHasInstancesError,
    NodeUnreachableError,
    ParameterError,
    ReconciliationTimeoutError,
    SkyportError,
    UnauthorizedError,
)


class TestNodeUnreachableError:
    """Tests for NodeUnreachableError."""

    def test_inherits_skyport_error(self) -> None:
        """NodeUnreachableError should inherit from SkyportError."""
        exc = NodeUnreachableError()
        assert isinstance(exc, SkyportError)
        assert isinstance(exc, Exception)

    def test_has_correct_status_code(self) -> None:
        """Should have 502 status code."""
        assert NodeUnreachableError().status_code == 502

    def test_default_message(self) -> None:
        exc = NodeUnreachableError()
        assert exc.message == "Connection to node failed"
        assert exc.details is None

    def test_carries_upstream_details(self) -> None:
        """Upstream error body should surface in the response details."""
        exc = NodeUnreachableError("Node node-1 answered 500", details={"reason": "disk full"})
        resp = exc.to_response()

        assert resp.error.code == "NODE_UNREACHABLE"
        assert resp.error.message == "Node node-1 answered 500"
        assert resp.error.details == {"reason": "disk full"}


class TestParameterError:
    """Tests for ParameterError."""

    def test_has_correct_status_code(self) -> None:
        assert ParameterError().status_code == 400
        assert ParameterError().code == ErrorCode.INVALID_PARAMETERS

    def test_missing_fields_in_details(self) -> None:
        exc = ParameterError(details={"missing": ["image", "cpu"]})
        assert exc.message == "Missing parameters"
        assert exc.to_response().error.details == {"missing": ["image", "cpu"]}


class TestReconciliationTimeoutError:
    """Tests for ReconciliationTimeoutError."""

    def test_message_names_instance_and_attempts(self) -> None:
        exc = ReconciliationTimeoutError("a1b2c3d4", 50)

        assert exc.instance_id == "a1b2c3d4"
        assert exc.attempts == 50
        assert exc.status_code == 504
        assert exc.message == "Instance a1b2c3d4 failed to become ready after 50 attempts"


@pytest.mark.parametrize(
    ("error_cls", "code", "status_code"),
    [
        (UnauthorizedError, ErrorCode.UNAUTHORIZED, 401),
        (ForbiddenError, ErrorCode.FORBIDDEN, 403),
        (InstanceNotFoundError, ErrorCode.INSTANCE_NOT_FOUND, 404),
        (InstanceSuspendedError, ErrorCode.INSTANCE_SUSPENDED, 423),
        (NodeHasInstancesError, ErrorCode.NODE_HAS_INSTANCES, 409),
    ],
)
def test_error_codes(error_cls: type[SkyportError], code: ErrorCode, status_code: int) -> None:
    """Each error maps to its code and HTTP status."""
    exc = error_cls()
    assert exc.code == code
    assert exc.status_code == status_code
    assert exc.to_response().error.code == code.value


class TestErrorCodeEnum:
    """Tests for ErrorCode enum."""

    def test_all_codes_are_strings(self) -> None:
        for code in ErrorCode:
            assert isinstance(code.value, str)
            assert code.value == code.name
