from __future__ import annotations

import os
from typing import Any, cast

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from mangum.types import LambdaContext, LambdaEvent, LifespanMode

from vapor_runtime.asgi import asgi_worker_factory
from vapor_runtime.bridge import WorkerBridge
from vapor_runtime.responses import to_lambda_response

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="VaporRuntime")

_APP = os.environ.get("VAPOR_APP", "main:app")
_BASE_PATH = os.environ.get("LAMBDA_TASK_ROOT", os.getcwd())
_SCRIPT_FILENAME = os.environ.get("VAPOR_HANDLER") or None
_LIFESPAN = cast(LifespanMode, os.environ.get("VAPOR_LIFESPAN", "auto"))
_STRICT_RESPONSE = os.environ.get("VAPOR_STRICT_RESPONSE", "").lower() in ("1", "true", "yes")

bridge = WorkerBridge(
    asgi_worker_factory(_APP, lifespan=_LIFESPAN),
    strict_response=_STRICT_RESPONSE,
    handler=_SCRIPT_FILENAME,
)


@logger.inject_lambda_context
@tracer.capture_lambda_handler
@metrics.log_metrics
def lambda_handler(event: LambdaEvent, context: LambdaContext) -> dict[str, Any]:
    # Cold start: the worker lives as long as the execution environment
    if bridge.current_worker is None:
        bridge.boot(_BASE_PATH)

    response = bridge.handle(event, context)
    if response is None:
        metrics.add_metric(name="WorkerFault", value=1, unit=MetricUnit.Count)
        logger.warning("Worker produced no response", extra={"path": event.get("path") or event.get("rawPath")})
    return to_lambda_response(response, event)
