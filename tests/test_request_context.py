"""Tests for request metadata."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from request_context import bind_request, current_request_info, request_info_from_environ
from utils import hostname


def test_wsgi_environ() -> None:
    environ = {
        "wsgi.url_scheme": "https",
        "REQUEST_METHOD": "POST",
        "SCRIPT_NAME": "/api",
        "PATH_INFO": "/orders",
        "QUERY_STRING": "page=2",
        "HTTP_HOST": "shop.example",
    }
    info = request_info_from_environ(environ)
    assert info.scheme == "https"
    assert info.method == "POST"
    assert info.uri == "/api/orders?page=2"
    assert info.host == "shop.example"


def test_cgi_style_environ() -> None:
    info = request_info_from_environ({"REQUEST_SCHEME": "https", "REQUEST_URI": "/x?y=1", "SERVER_NAME": "srv"})
    assert info.to_dict() == {"scheme": "https", "uri": "/x?y=1", "method": "GET", "host": "srv"}


def test_defaults() -> None:
    info = request_info_from_environ({})
    assert info.scheme == "http"
    assert info.uri == ""
    assert info.method == "GET"
    assert info.host == hostname()


def test_bind_request_scopes_environ(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REQUEST_METHOD", "PUT")
    with bind_request({"REQUEST_METHOD": "DELETE"}):
        assert current_request_info().method == "DELETE"
    # falls back to os.environ outside a bound request
    assert current_request_info().method == "PUT"
