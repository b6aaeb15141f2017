from __future__ import annotations

from http import HTTPStatus
from typing import Any

from mangum.adapter import DEFAULT_TEXT_MIME_TYPES
from mangum.handlers.alb import case_mutated_headers
from mangum.handlers.utils import handle_base64_response_body, handle_multi_value_headers
from mangum.types import Headers

from .events import RawEvent, classify
from .models import CanonicalResponse, EventShape

# structured syntax suffixes (application/problem+json, image/svg+xml) are text too
TEXT_MIME_TYPES = [*DEFAULT_TEXT_MIME_TYPES, "+json", "+xml"]


def raw_headers(response: CanonicalResponse) -> Headers:
    return [[name.encode(), value.encode()] for name, values in response.headers.items() for value in values]


def encode_body(response: CanonicalResponse) -> tuple[str, bool]:
    """Return the body as Lambda expects it, plus whether it is base64."""
    content_type = {"content-type": response.header("content-type") or ""}
    return handle_base64_response_body(response.body, content_type, TEXT_MIME_TYPES)


def bad_gateway() -> CanonicalResponse:
    return CanonicalResponse(
        status=int(HTTPStatus.BAD_GATEWAY),
        headers={"content-type": ["text/plain; charset=utf-8"]},
        body=HTTPStatus.BAD_GATEWAY.phrase.encode(),
    )


def _status_description(status: int) -> str:
    try:
        return f"{status} {HTTPStatus(status).phrase}"
    except ValueError:
        return str(status)


def to_lambda_response(response: CanonicalResponse | None, event: RawEvent) -> dict[str, Any]:
    """Marshal a captured response into the payload format of the event's trigger."""
    shape = classify(event)
    if response is None:
        response = bad_gateway()
    body, is_base64 = encode_body(response)
    payload: dict[str, Any] = {"statusCode": response.status, "body": body, "isBase64Encoded": is_base64}

    if shape is EventShape.STREAMLINED:
        payload["headers"] = {
            name: ", ".join(values) for name, values in response.headers.items() if name != "set-cookie"
        }
        if response.headers.get("set-cookie"):
            payload["cookies"] = list(response.headers["set-cookie"])
        return payload

    if shape is EventShape.LOAD_BALANCER:
        payload["statusDescription"] = _status_description(response.status)
        # the target group answers in the header format the request arrived in
        if event.get("multiValueHeaders") is not None:
            payload["multiValueHeaders"] = {name: list(values) for name, values in response.headers.items()}
        else:
            payload["headers"] = case_mutated_headers(response.headers)
        return payload

    headers, multi_value_headers = handle_multi_value_headers(raw_headers(response))
    payload["headers"] = headers
    payload["multiValueHeaders"] = multi_value_headers
    return payload
