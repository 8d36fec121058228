"""
Request metadata: scheme, URI, method and host of the request being profiled.
Hosts bind a WSGI/CGI-style environ per request; without one, os.environ is read
(CGI convention).
"""
from __future__ import annotations

import contextlib
import contextvars
import os
from typing import Any, Iterator, Mapping

from models import RequestInfo
from utils import hostname

_environ: contextvars.ContextVar[Mapping[str, Any] | None] = contextvars.ContextVar(
    "reqprof_request_environ", default=None
)


@contextlib.contextmanager
def bind_request(environ: Mapping[str, Any]) -> Iterator[None]:
    """Make environ the request metadata source for the current context."""
    token = _environ.set(environ)
    try:
        yield
    finally:
        _environ.reset(token)


def request_info_from_environ(environ: Mapping[str, Any]) -> RequestInfo:
    scheme = environ.get("REQUEST_SCHEME") or environ.get("wsgi.url_scheme") or "http"
    uri = environ.get("REQUEST_URI") or ""
    if not uri and environ.get("PATH_INFO") is not None:
        uri = environ.get("SCRIPT_NAME", "") + environ["PATH_INFO"]
        if environ.get("QUERY_STRING"):
            uri += "?" + environ["QUERY_STRING"]
    return RequestInfo(
        scheme=str(scheme),
        uri=str(uri),
        method=str(environ.get("REQUEST_METHOD") or "GET"),
        host=str(environ.get("HTTP_HOST") or environ.get("SERVER_NAME") or hostname()),
    )


def current_request_info() -> RequestInfo:
    environ = _environ.get()
    return request_info_from_environ(os.environ if environ is None else environ)
