from mcp_trace.core.messages import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    MessageExtra,
    Unrecognized,
    parse_message,
)


class _Model:
    def __init__(self, data: dict) -> None:
        self._data = data

    def model_dump(self, **_: object) -> dict:
        return dict(self._data)


class _RootModel:
    def __init__(self, root: object) -> None:
        self.root = root


def test_parse_message_classifies_each_jsonrpc_shape() -> None:
    assert isinstance(parse_message({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}), JSONRPCRequest)
    assert isinstance(parse_message({"jsonrpc": "2.0", "method": "notifications/progress"}), JSONRPCNotification)
    assert isinstance(parse_message({"jsonrpc": "2.0", "id": None, "method": "ping"}), JSONRPCRequest)
    assert isinstance(parse_message({"jsonrpc": "2.0", "id": 1, "result": {}}), JSONRPCResponse)
    assert isinstance(parse_message({"jsonrpc": "2.0", "id": "a", "error": {"code": -1, "message": "x"}}), JSONRPCResponse)
    assert isinstance(parse_message({"jsonrpc": "2.0", "id": 1}), Unrecognized)
    assert isinstance(parse_message("not a message"), Unrecognized)


def test_parse_message_accepts_model_objects() -> None:
    request = parse_message(_RootModel(_Model({"id": 7, "method": "tools/call", "params": {"name": "add"}})))
    assert isinstance(request, JSONRPCRequest)
    assert request.id == 7
    assert request.params == {"name": "add"}


def test_response_error_summary() -> None:
    response = parse_message({"id": 3, "error": {"code": -32601, "message": "Method not found"}})
    assert isinstance(response, JSONRPCResponse)
    assert response.is_error
    assert response.error_summary() == "-32601: Method not found"


def test_message_extra_header_lookup_is_case_insensitive() -> None:
    extra = MessageExtra.coerce({"request_info": {"headers": {"Mcp-Session-Id": ["s-1", "s-2"], "User-Agent": "ua"}}})
    assert extra.header("mcp-session-id") == "s-1"
    assert extra.header("USER-AGENT") == "ua"
    assert extra.header("missing") is None
    assert MessageExtra.coerce(None).headers == {}


def test_null_id_still_marks_request_and_response() -> None:
    request = parse_message({"jsonrpc": "2.0", "id": None, "method": "tools/call", "params": {"name": "add"}})
    assert isinstance(request, JSONRPCRequest)
    assert request.id is None

    response = parse_message({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})
    assert isinstance(response, JSONRPCResponse)
    assert response.id is None
    assert response.error_summary() == "-32700: Parse error"
