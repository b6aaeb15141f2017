"""Classification of trigger events and per-shape query/header extraction.

Every trigger event is classified once into an ``EventShape``; query string
and header extraction then dispatch on that shape instead of re-probing the
raw event for marker fields.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import unquote, unquote_plus, urlencode

from .models import EventShape

RawEvent = Mapping[str, Any]
QueryParams = dict[str, str | list[str]]


def classify(event: RawEvent) -> EventShape:
    if event.get("version") == "2.0":
        return EventShape.STREAMLINED
    if "elb" in _request_context(event):
        return EventShape.LOAD_BALANCER
    return EventShape.LEGACY


def _request_context(event: RawEvent) -> Mapping[str, Any]:
    ctx = event.get("requestContext")
    return ctx if isinstance(ctx, Mapping) else {}


def http_context(event: RawEvent) -> Mapping[str, Any]:
    http = _request_context(event).get("http")
    return http if isinstance(http, Mapping) else {}


def resolve_method(event: RawEvent) -> str:
    return str(event.get("httpMethod") or http_context(event).get("method") or "GET")


def resolve_path(event: RawEvent) -> str:
    return str(http_context(event).get("path") or event.get("path") or "/")


def resolve_protocol(event: RawEvent) -> str:
    return str(
        _request_context(event).get("protocol")
        or http_context(event).get("protocol")
        or "HTTP/1.1"
    )


def resolve_source_ip(event: RawEvent) -> str | None:
    source_ip = None
    identity = _request_context(event).get("identity")
    if isinstance(identity, Mapping) and identity.get("sourceIp") is not None:
        source_ip = str(identity["sourceIp"])
    if http_context(event).get("sourceIp") is not None:
        source_ip = str(http_context(event)["sourceIp"])
    return source_ip


# Query strings


def _array_key(key: str) -> str:
    # A trailing "[]" marks an array parameter; the suffix is not part of the name.
    return key[:-2] if key.endswith("[]") else key


def _single_value_params(event: RawEvent) -> QueryParams:
    params = event.get("queryStringParameters") or {}
    return {str(key): value for key, value in params.items()}


def _multi_value_params(event: RawEvent, decode: bool) -> QueryParams:
    params: QueryParams = {}
    for key, values in (event.get("multiValueQueryStringParameters") or {}).items():
        key = unquote_plus(str(key)) if decode else str(key)
        values = [v for v in values or [] if v is not None]
        if decode:
            values = [unquote_plus(str(v)) for v in values]
        if len(values) == 1:
            params[key] = values[0]
        elif values:
            params[_array_key(key)] = values
    return params


def _streamlined_query(event: RawEvent) -> QueryParams:
    params: QueryParams = {}
    for key, value in (event.get("queryStringParameters") or {}).items():
        if value is None:
            continue
        values = str(value).split(",")
        if len(values) == 1:
            params[key] = values[0]
        else:
            params[_array_key(key)] = values
    return params


def _legacy_query(event: RawEvent) -> QueryParams:
    if event.get("multiValueQueryStringParameters") is None:
        return _single_value_params(event)
    return _multi_value_params(event, decode=False)


def _load_balancer_query(event: RawEvent) -> QueryParams:
    if event.get("multiValueQueryStringParameters") is None:
        return _single_value_params(event)
    return _multi_value_params(event, decode=True)


_QUERY_EXTRACTORS: dict[EventShape, Callable[[RawEvent], QueryParams]] = {
    EventShape.STREAMLINED: _streamlined_query,
    EventShape.LEGACY: _legacy_query,
    EventShape.LOAD_BALANCER: _load_balancer_query,
}


def build_query_string(params: Mapping[str, Any]) -> str:
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        for item in value if isinstance(value, list) else [value]:
            if item is None:
                continue
            pairs.append((key, str(item)))
    return urlencode(pairs)


def query_string(event: RawEvent, shape: EventShape) -> str:
    return build_query_string(_QUERY_EXTRACTORS[shape](event))


# Headers


def _last_values(event: RawEvent) -> dict[str, str]:
    headers: dict[str, str] = {}
    for name, values in (event.get("multiValueHeaders") or {}).items():
        if values:
            headers[str(name).lower()] = str(values[-1])
    return headers


def _single_values(event: RawEvent) -> dict[str, str]:
    return {
        str(name).lower(): str(value)
        for name, value in (event.get("headers") or {}).items()
        if value is not None
    }


def _gateway_headers(event: RawEvent) -> dict[str, str]:
    if event.get("multiValueHeaders") is not None:
        return _last_values(event)
    return _single_values(event)


def _streamlined_headers(event: RawEvent) -> dict[str, str]:
    # repeated headers arrive comma-joined and stay that way
    headers = _single_values(event)
    cookies = event.get("cookies")
    if cookies and "cookie" not in headers:
        headers["cookie"] = "; ".join(str(c) for c in cookies)
    return headers


def _load_balancer_headers(event: RawEvent) -> dict[str, str]:
    return {unquote(name).lower(): unquote(value) for name, value in _gateway_headers(event).items()}


_HEADER_EXTRACTORS: dict[EventShape, Callable[[RawEvent], dict[str, str]]] = {
    EventShape.STREAMLINED: _streamlined_headers,
    EventShape.LEGACY: _gateway_headers,
    EventShape.LOAD_BALANCER: _load_balancer_headers,
}


def headers(event: RawEvent, shape: EventShape) -> dict[str, str]:
    return _HEADER_EXTRACTORS[shape](event)
