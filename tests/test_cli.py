"""Tests for CLI argument handling in spicesession.__main__."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from spicesession.__main__ import build_parser, main


@pytest.fixture
def server_mcp():
    """The server's FastMCP instance, with settings restored afterwards."""
    from spicesession.server import mcp

    saved = (mcp.settings.host, mcp.settings.port, mcp.settings.transport_security)
    yield mcp
    mcp.settings.host, mcp.settings.port, mcp.settings.transport_security = saved


def test_host_port_reach_mcp_settings(server_mcp, monkeypatch):
    """--host and --port must propagate to mcp.settings before mcp.run()."""
    monkeypatch.delenv("SPICESESSION_API_KEY", raising=False)
    captured = {}

    def fake_run(transport):
        captured["host"] = server_mcp.settings.host
        captured["port"] = server_mcp.settings.port
        captured["transport"] = transport

    with patch.object(server_mcp, "run", side_effect=fake_run):
        main(["--transport", "streamable-http", "--host", "0.0.0.0", "--port", "9999"])

    assert captured == {"host": "0.0.0.0", "port": 9999, "transport": "streamable-http"}
    assert server_mcp.settings.transport_security.enable_dns_rebinding_protection is False


def test_host_port_reach_uvicorn_with_auth(server_mcp):
    """--host and --port must reach the authenticated runner when a key is set."""
    captured = {}

    def fake_run_with_auth(mcp, transport, host, port, api_key):
        captured.update(transport=transport, host=host, port=port, api_key=api_key)

    with (
        patch.dict("os.environ", {"SPICESESSION_API_KEY": "test-key-123"}),
        patch("spicesession.__main__._run_with_auth", side_effect=fake_run_with_auth),
        patch.object(server_mcp, "run") as plain_run,
    ):
        main(["--transport", "sse", "--host", "0.0.0.0", "--port", "7777"])

    plain_run.assert_not_called()
    assert captured == {
        "transport": "sse",
        "host": "0.0.0.0",
        "port": 7777,
        "api_key": "test-key-123",
    }


def test_stdio_ignores_api_key(server_mcp):
    """stdio has no HTTP layer, so the key never wraps it."""
    with (
        patch.dict("os.environ", {"SPICESESSION_API_KEY": "k"}),
        patch("spicesession.__main__._run_with_auth") as auth_run,
        patch.object(server_mcp, "run") as plain_run,
    ):
        main([])

    auth_run.assert_not_called()
    plain_run.assert_called_once_with(transport="stdio")


def test_library_paths_are_indexed(server_mcp, tmp_path):
    with (
        patch("spicesession.server.index_libraries") as index,
        patch.object(server_mcp, "run"),
    ):
        main(["--library-path", str(tmp_path), "--library-path", "/opt/models"])

    index.assert_called_once_with([str(tmp_path), "/opt/models"])


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("SPICESESSION_TRANSPORT", "sse")
    monkeypatch.setenv("SPICESESSION_LOG_LEVEL", "debug")
    args = build_parser().parse_args([])
    assert args.transport == "sse"
    assert args.log_level == "DEBUG"


def test_log_level_case_insensitive():
    assert build_parser().parse_args(["--log-level", "warning"]).log_level == "WARNING"


def test_bad_transport_exits():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--transport", "carrier-pigeon"])
