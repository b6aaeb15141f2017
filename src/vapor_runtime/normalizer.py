"""Turn a trigger event into a ``CanonicalRequest``.

``normalize`` never fails on a missing field: every lookup has a default, so
a sparse event still yields a usable request. Apart from the two request-time
variables the result depends only on the event.
"""

from __future__ import annotations

import base64
import binascii
import time
from collections.abc import Callable, Mapping
from typing import Any

from aws_lambda_powertools import Logger

from . import events
from .models import CanonicalRequest

logger = Logger()

SOURCE_IP_HEADER = "x-vapor-source-ip"
DEFAULT_CONTENT_TYPE = "application/x-www-form-urlencoded"

ServerVariables = dict[str, str | int | float]


def normalize(
    event: Mapping[str, Any],
    server_variables: Mapping[str, str | int | float] | None = None,
    handler: str | None = None,
    clock: Callable[[], float] = time.time,
) -> CanonicalRequest:
    shape = events.classify(event)
    method = events.resolve_method(event)
    path = events.resolve_path(event)
    query = events.query_string(event, shape)
    headers = events.headers(event, shape)
    body = request_body(event)

    now = clock()
    port = headers.get("x-forwarded-port", 80)
    variables: ServerVariables = dict(server_variables or {})
    variables.update(
        {
            "GATEWAY_INTERFACE": "FastCGI/1.0",
            "PATH_INFO": path,
            "QUERY_STRING": query,
            "REMOTE_ADDR": "127.0.0.1",
            "REMOTE_PORT": port,
            "REQUEST_METHOD": method,
            "REQUEST_URI": f"{path}?{query}" if query else path,
            "REQUEST_TIME": int(now),
            "REQUEST_TIME_FLOAT": now,
            "SERVER_ADDR": "127.0.0.1",
            "SERVER_NAME": headers.get("host", "localhost"),
            "SERVER_PORT": port,
            "SERVER_PROTOCOL": events.resolve_protocol(event),
            "SERVER_SOFTWARE": "vapor",
        }
    )
    if handler:
        variables["SCRIPT_FILENAME"] = handler

    _ensure_content_type(method, headers, variables)
    _ensure_content_length(method, headers, variables, body)

    source_ip = events.resolve_source_ip(event)
    if source_ip is not None:
        headers[SOURCE_IP_HEADER] = source_ip

    for name, value in headers.items():
        variables["HTTP_" + name.upper().replace("-", "_")] = value

    return CanonicalRequest(
        server_variables=variables,
        headers=headers,
        body=body,
        shape=shape,
    )


def request_body(event: Mapping[str, Any]) -> bytes:
    raw = event.get("body") or ""
    data = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
    if not event.get("isBase64Encoded"):
        return data
    try:
        return base64.b64decode(data)
    except (binascii.Error, ValueError):
        logger.warning("Request body is not valid base64, passing it through", extra={"length": len(data)})
        return data


def _ensure_content_type(method: str, headers: dict[str, str], variables: ServerVariables) -> None:
    if "content-type" not in headers and method.upper() == "POST":
        headers["content-type"] = DEFAULT_CONTENT_TYPE
    if "content-type" in headers:
        variables["CONTENT_TYPE"] = headers["content-type"]


def _ensure_content_length(
    method: str, headers: dict[str, str], variables: ServerVariables, body: bytes
) -> None:
    if "content-length" not in headers and method.upper() != "TRACE":
        headers["content-length"] = str(len(body))
    if "content-length" in headers:
        variables["CONTENT_LENGTH"] = headers["content-length"]
