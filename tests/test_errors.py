import pytest

from mcpwire.errors import (
    DuplicateResponseError,
    LackResponseChannelError,
    LackSessionError,
    MCPError,
    MethodNotSupportError,
    RequestInvalidError,
    ResponseError,
    SendEOFError,
    ServerNotSupportError,
    SessionClosedError,
    SessionNotInitializedError,
)


def _default_errors():
    return [
        LackSessionError(),
        SessionNotInitializedError(),
        ServerNotSupportError(),
        MethodNotSupportError(),
        RequestInvalidError(),
        SendEOFError(),
        SessionClosedError(),
        LackResponseChannelError(),
        DuplicateResponseError(),
    ]


def test_errors_are_caught_as_mcp_error_with_default_message():
    for error in _default_errors():
        with pytest.raises(MCPError) as excinfo:
            raise error
        assert str(excinfo.value) == type(error).default_message
        assert str(excinfo.value) != ""


def test_custom_detail_replaces_default_message():
    detail = "method=tools/unknown"
    errors = [
        LackSessionError(detail),
        SessionNotInitializedError(detail),
        ServerNotSupportError(detail),
        MethodNotSupportError(detail),
        RequestInvalidError(detail),
        SendEOFError(detail),
        SessionClosedError(detail),
        LackResponseChannelError(detail),
        DuplicateResponseError(detail),
    ]
    assert [str(error) for error in errors] == [detail] * len(errors)


def test_default_messages_are_distinct():
    errors = _default_errors()
    messages = {str(error) for error in errors}
    assert len(messages) == len(errors)


def test_session_closed_message_matches_source():
    assert str(SessionClosedError()) == "session already closed"


def test_response_error_keeps_fields():
    error = ResponseError(-32601, "method not found", {"method": "x"})
    assert (error.code, error.message, error.data) == (-32601, "method not found", {"method": "x"})
    assert "method not found" in str(error)
    assert "-32601" in str(error)


def test_response_error_without_data():
    error = ResponseError(-32603, "boom")
    assert error.data is None
    with pytest.raises(MCPError):
        raise error