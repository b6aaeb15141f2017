from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

import pytest
from fastapi import FastAPI

from vapor_runtime import api_handler
from vapor_runtime.asgi import asgi_worker_factory
from vapor_runtime.bridge import WorkerBridge

app = FastAPI()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/fail")
def fail() -> dict[str, str]:
    raise RuntimeError("unhandled")


@dataclass
class FakeLambdaContext:
    function_name: str = "vapor-test"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:vapor-test"
    aws_request_id: str = "req-1"


def _http_v2_event(path: str, method: str = "GET") -> dict[str, Any]:
    return {
        "version": "2.0",
        "rawPath": path,
        "routeKey": f"{method} {path}",
        "rawQueryString": "",
        "headers": {"host": "example.com"},
        "requestContext": {"http": {"method": method, "path": path, "protocol": "HTTP/1.1"}},
        "isBase64Encoded": False,
    }


def _alb_event(path: str) -> dict[str, Any]:
    return {
        "httpMethod": "GET",
        "path": path,
        "multiValueHeaders": {"host": ["example.com"]},
        "multiValueQueryStringParameters": {},
        "requestContext": {"elb": {"targetGroupArn": "arn:aws:elasticloadbalancing:tg"}},
        "body": "",
        "isBase64Encoded": False,
    }


@pytest.fixture()
def bridge(monkeypatch: pytest.MonkeyPatch) -> Any:
    bridge = WorkerBridge(asgi_worker_factory(app, lifespan="off"))
    monkeypatch.setattr(api_handler, "bridge", bridge)
    yield bridge
    bridge.terminate()


def test_lambda_handler_health_ok(bridge: WorkerBridge) -> None:
    event = _http_v2_event("/health", "GET")
    resp = api_handler.lambda_handler(event, FakeLambdaContext())
    assert isinstance(resp, dict)
    assert resp.get("statusCode") == HTTPStatus.OK
    assert "ok" in resp.get("body", "")


def test_lambda_handler_boots_once(bridge: WorkerBridge) -> None:
    api_handler.lambda_handler(_http_v2_event("/health"), FakeLambdaContext())
    worker = bridge.current_worker
    assert worker is not None
    api_handler.lambda_handler(_http_v2_event("/health"), FakeLambdaContext(aws_request_id="req-2"))
    assert bridge.current_worker is worker


def test_lambda_handler_worker_fault_is_bad_gateway(bridge: WorkerBridge) -> None:
    resp = api_handler.lambda_handler(_http_v2_event("/fail"), FakeLambdaContext())
    assert resp["statusCode"] == HTTPStatus.BAD_GATEWAY
    assert bridge.response_slot.is_empty


def test_lambda_handler_alb_response_shape(bridge: WorkerBridge) -> None:
    resp = api_handler.lambda_handler(_alb_event("/health"), FakeLambdaContext())
    assert resp["statusCode"] == HTTPStatus.OK
    assert resp["statusDescription"] == "200 OK"
    assert resp["multiValueHeaders"]["content-type"] == ["application/json"]
