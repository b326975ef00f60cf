"""Shared fixtures for the ZenTao MCP tests."""

import json
import os
from collections.abc import Callable
from typing import Any
from unittest.mock import Mock, patch

import pytest
import requests

from mcp_zentao.models import ZenTaoConfig

BASE_URL = "https://zentao.example.com"


@pytest.fixture
def clean_env():
    """Run the test with an empty process environment, restored afterwards."""
    with patch.dict(os.environ, {}, clear=True):
        yield os.environ


@pytest.fixture
def zentao_config() -> ZenTaoConfig:
    """A complete configuration without a seeded token."""
    return ZenTaoConfig(base_url=BASE_URL, account="alice", password="secret")


@pytest.fixture
def response_factory() -> Callable[..., requests.Response]:
    """Factory building real ``requests.Response`` objects with a canned body."""

    def _make_response(
        status_code: int = 200, body: Any = None, headers: dict[str, str] | None = None
    ) -> requests.Response:
        response = requests.Response()
        response.status_code = status_code
        if body is None:
            content = b""
        elif isinstance(body, dict | list):
            content = json.dumps(body).encode("utf-8")
        else:
            content = str(body).encode("utf-8")
        response._content = content
        response.encoding = "utf-8"
        response.headers.update(headers if headers is not None else {"Content-Type": "application/json"})
        return response

    return _make_response


@pytest.fixture
def fake_session() -> Mock:
    """A ``requests.Session`` stand-in whose ``request`` calls are recorded."""
    return Mock(spec=requests.Session)


@pytest.fixture
def decorator_capturer():
    """Capture functions registered through a FastMCP decorator such as ``mcp.tool``.

    Usage::

        test_tools, capture_tool = decorator_capturer(server.mcp.tool)
        server.mcp.tool = capture_tool
        server._setup_tools()
        test_tools["zentao_get_token"](params)
    """

    def _make(_original_decorator: Callable[..., Any]) -> tuple[dict[str, Callable[..., Any]], Callable[..., Any]]:
        captured: dict[str, Callable[..., Any]] = {}

        def capture(*_args: Any, **_kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
            def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
                captured[func.__name__] = func
                return func

            return decorator

        return captured, capture

    return _make
