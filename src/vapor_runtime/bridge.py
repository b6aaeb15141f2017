"""Hand one trigger event at a time to a long-lived application worker.

The bridge is created once per process and owns both the worker handle and
the response slot. The worker never sees the bridge's state directly: it gets
the slot through the ``InvocationContext`` of the call it is serving and
writes its answer back through ``respond`` (or reports a fault through
``error``).
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from aws_lambda_powertools import Logger

from .models import CanonicalRequest, CanonicalResponse
from .normalizer import normalize
from .slot import ResponseAlreadySetError, ResponseSlot, SlotNotDrainedError

logger = Logger()


@dataclass
class InvocationContext:
    response_slot: ResponseSlot
    lambda_context: Any = None
    invocation_id: str = field(default_factory=lambda: str(uuid.uuid4()))


class WorkerClient(Protocol):
    def respond(self, context: InvocationContext, response: CanonicalResponse) -> None: ...

    def error(self, exc: BaseException, request: CanonicalRequest, context: InvocationContext) -> None: ...


class Worker(Protocol):
    def boot(self) -> None: ...

    def handle(self, request: CanonicalRequest, context: InvocationContext) -> None: ...

    def terminate(self) -> None: ...


WorkerFactory = Callable[[str, WorkerClient], Worker]


class WorkerBridge:
    def __init__(
        self,
        worker_factory: WorkerFactory,
        strict_response: bool = False,
        handler: str | None = None,
    ) -> None:
        self._worker_factory = worker_factory
        self._worker: Worker | None = None
        self._slot = ResponseSlot(strict=strict_response)
        self._handler = handler

    @property
    def current_worker(self) -> Worker | None:
        return self._worker

    @property
    def response_slot(self) -> ResponseSlot:
        return self._slot

    def boot(self, base_path: str) -> None:
        worker = self._worker_factory(base_path, self)
        worker.boot()
        self._worker = worker
        logger.info("Worker booted", extra={"base_path": base_path})

    def handle(self, event: Mapping[str, Any], lambda_context: Any = None) -> CanonicalResponse | None:
        """Run one event through the worker and return the captured response.

        Returns ``None`` when no worker is booted or when the worker reported
        a fault instead of responding; the caller turns that into a platform
        error response.
        """
        worker = self._worker
        if worker is None:
            logger.warning("Event received before a worker was booted")
            return None
        if not self._slot.is_empty:
            raise SlotNotDrainedError("Response slot was not drained after the previous invocation")

        request = normalize(event, handler=self._handler)
        context = InvocationContext(response_slot=self._slot, lambda_context=lambda_context)
        logger.debug(
            "Dispatching request to worker",
            extra={
                "invocation_id": context.invocation_id,
                "method": request.server_variables.get("REQUEST_METHOD"),
                "uri": request.server_variables.get("REQUEST_URI"),
            },
        )
        try:
            worker.handle(request, context)
        except ResponseAlreadySetError:
            self._slot.drain()
            raise
        except Exception as exc:  # worker broke its contract by raising
            self.error(exc, request, context)

        return self._slot.drain()

    def terminate(self) -> None:
        if self._worker is None:
            return
        try:
            self._worker.terminate()
        finally:
            self._worker = None
        logger.info("Worker terminated")

    # Callbacks invoked by the worker

    def respond(self, context: InvocationContext, response: CanonicalResponse) -> None:
        context.response_slot.put(response)

    def error(self, exc: BaseException, request: CanonicalRequest, context: InvocationContext) -> None:
        logger.error(
            f"Worker failed to handle request: {exc}",
            exc_info=exc,
            extra={
                "invocation_id": context.invocation_id,
                "method": request.server_variables.get("REQUEST_METHOD"),
                "uri": request.server_variables.get("REQUEST_URI"),
                "error_type": type(exc).__name__,
            },
        )
