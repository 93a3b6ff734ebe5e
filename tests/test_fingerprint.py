# Tests for server fingerprinting
from mcporbit.fingerprint import calculate_fingerprint, canonical_json, normalize_headers
from mcporbit.models import HttpTransport, ServerConfig, StdioTransport


def test_same_fields_same_fingerprint():
    """Fingerprint is deterministic."""
    fields = {"type": "stdio", "command": "npx", "args": ["-y", "pkg"]}
    assert calculate_fingerprint(fields) == calculate_fingerprint(dict(fields))


def test_fingerprint_is_sha256_hex():
    fingerprint = calculate_fingerprint({"type": "stdio", "command": "npx"})
    assert len(fingerprint) == 64
    int(fingerprint, 16)


def test_key_order_does_not_matter():
    a = calculate_fingerprint({"type": "stdio", "command": "x", "env": {"A": "1", "B": "2"}})
    b = calculate_fingerprint({"env": {"B": "2", "A": "1"}, "command": "x", "type": "stdio"})
    assert a == b


def test_args_order_matters():
    a = calculate_fingerprint({"type": "stdio", "command": "x", "args": ["a", "b"]})
    b = calculate_fingerprint({"type": "stdio", "command": "x", "args": ["b", "a"]})
    assert a != b


def test_missing_field_equals_explicit_none():
    a = calculate_fingerprint({"type": "stdio", "command": "x"})
    b = calculate_fingerprint({"type": "stdio", "command": "x", "cwd": None, "env": None})
    assert a == b


def test_cosmetic_headers_ignored_case_insensitively():
    a = calculate_fingerprint({"type": "http", "url": "https://h/mcp"})
    b = calculate_fingerprint({
        "type": "http",
        "url": "https://h/mcp",
        "headers": {"ACCEPT": "application/json", "Content-Type": "x", "user-agent": "y"},
    })
    assert a == b


def test_meaningful_headers_change_fingerprint():
    a = calculate_fingerprint({"type": "http", "url": "https://h/mcp"})
    b = calculate_fingerprint({"type": "http", "url": "https://h/mcp", "headers": {"Authorization": "Bearer t"}})
    assert a != b


def test_normalize_headers_empty_becomes_none():
    assert normalize_headers({"Accept": "*/*"}) is None
    assert normalize_headers({}) is None
    assert normalize_headers(None) is None
    assert normalize_headers({"X-Key": "1", "accept": "*/*"}) == {"X-Key": "1"}


def test_canonical_json_sorts_nested_keys():
    assert canonical_json({"b": {"d": 1, "c": 2}, "a": [3, 1]}) == '{"a":[3,1],"b":{"c":2,"d":1}}'


def test_name_does_not_affect_server_fingerprint():
    """Renaming a server never changes its identity."""
    transport = StdioTransport(command="uvx", args=["mcp-server-git"])
    assert ServerConfig("git", transport).fingerprint == ServerConfig("source-control", transport).fingerprint


def test_transport_type_affects_fingerprint():
    stdio = ServerConfig("a", StdioTransport(command="https://h/mcp"))
    http = ServerConfig("a", HttpTransport(url="https://h/mcp"))
    assert stdio.fingerprint != http.fingerprint
