"""Worker that serves canonical requests from an in-process ASGI application.

The worker owns a private event loop for its whole life: ``boot`` creates it
and runs Mangum's lifespan startup, ``handle`` runs one HTTP cycle to
completion on it, and ``terminate`` runs the lifespan shutdown and closes it.
"""

from __future__ import annotations

import asyncio
import importlib
import sys
from typing import Any
from urllib.parse import unquote

from aws_lambda_powertools import Logger
from mangum.exceptions import LifespanFailure
from mangum.protocols.lifespan import LifespanCycle, LifespanCycleState
from mangum.types import ASGI, LifespanMode, Message, Scope

from .bridge import InvocationContext, WorkerClient, WorkerFactory
from .models import CanonicalRequest, CanonicalResponse
from .normalizer import SOURCE_IP_HEADER

logger = Logger()


class HttpCycle:
    """One request/response exchange with the application."""

    def __init__(self, scope: Scope, body: bytes) -> None:
        self.scope = scope
        self.body = body
        self.status: int | None = None
        self.headers: dict[str, list[str]] = {}
        self.chunks: list[bytes] = []
        self._request_sent = False
        self._complete = asyncio.Event()

    async def receive(self) -> Message:
        if not self._request_sent:
            self._request_sent = True
            return {"type": "http.request", "body": self.body, "more_body": False}
        await self._complete.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: Message) -> None:
        message_type = message["type"]
        if message_type == "http.response.start":
            self.status = message["status"]
            for name, value in message.get("headers") or []:
                self.headers.setdefault(name.decode("latin-1").lower(), []).append(value.decode("latin-1"))
        elif message_type == "http.response.body":
            if self.status is None:
                raise RuntimeError("Response body sent before http.response.start")
            self.chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                self._complete.set()

    async def run(self, app: ASGI) -> CanonicalResponse:
        try:
            await app(self.scope, self.receive, self.send)
        finally:
            self._complete.set()
        if self.status is None:
            raise RuntimeError("ASGI application returned without starting a response")
        return CanonicalResponse(status=self.status, headers=self.headers, body=b"".join(self.chunks))


def _port(value: Any, default: int = 80) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_scope(request: CanonicalRequest, state: dict[str, Any] | None = None) -> Scope:
    variables = request.server_variables
    headers = request.headers
    protocol = str(variables.get("SERVER_PROTOCOL", "HTTP/1.1"))
    client_ip = headers.get(SOURCE_IP_HEADER) or str(variables.get("REMOTE_ADDR", "127.0.0.1"))
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": protocol.partition("/")[2] or "1.1",
        "method": str(variables.get("REQUEST_METHOD", "GET")).upper(),
        "scheme": headers.get("x-forwarded-proto", "https"),
        "path": unquote(str(variables.get("PATH_INFO", "/"))),
        "root_path": "",
        "query_string": str(variables.get("QUERY_STRING", "")).encode(),
        "headers": [
            (name.encode("latin-1", "replace"), value.encode("latin-1", "replace")) for name, value in headers.items()
        ],
        "client": (client_ip, _port(variables.get("REMOTE_PORT"))),
        "server": (str(variables.get("SERVER_NAME", "localhost")), _port(variables.get("SERVER_PORT"))),
        "state": dict(state or {}),
    }


class AsgiWorker:
    def __init__(self, app: ASGI, client: WorkerClient, lifespan: LifespanMode = "auto") -> None:
        self.app = app
        self.client = client
        self.lifespan = lifespan
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lifespan_cycle: LifespanCycle | None = None

    @property
    def booted(self) -> bool:
        return self._loop is not None

    def boot(self) -> None:
        if self._loop is not None:
            raise RuntimeError("Worker is already booted")
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        if self.lifespan == "off":
            return
        # the cycle binds to the current event loop when constructed
        self._lifespan_cycle = LifespanCycle(self.app, self.lifespan)
        try:
            self._lifespan_cycle.__enter__()
            if self.lifespan == "on" and self._lifespan_cycle.state is not LifespanCycleState.STARTUP:
                raise LifespanFailure("Lifespan startup failed and lifespan is 'on'.")
        except LifespanFailure:
            self._close_loop()
            raise

    def handle(self, request: CanonicalRequest, context: InvocationContext) -> None:
        if self._loop is None:
            raise RuntimeError("Worker has not been booted")
        state = self._lifespan_cycle.lifespan_state if self._lifespan_cycle else None
        cycle = HttpCycle(build_scope(request, state), request.body)
        try:
            response = self._loop.run_until_complete(cycle.run(self.app))
        except Exception as exc:
            self.client.error(exc, request, context)
            return
        self.client.respond(context, response)

    def terminate(self) -> None:
        if self._loop is None:
            return
        try:
            if self._lifespan_cycle is not None:
                self._lifespan_cycle.__exit__(None, None, None)
        finally:
            self._close_loop()

    def _close_loop(self) -> None:
        loop, self._loop = self._loop, None
        self._lifespan_cycle = None
        if loop is None:
            return
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()
        asyncio.set_event_loop(None)


def load_app(target: str, base_path: str | None = None) -> ASGI:
    """Import an ASGI application from a ``"package.module:attribute"`` string."""
    module_name, _, attribute = target.partition(":")
    if base_path and base_path not in sys.path:
        sys.path.insert(0, base_path)
    app: Any = importlib.import_module(module_name)
    for part in (attribute or "app").split("."):
        app = getattr(app, part)
    return app


def asgi_worker_factory(app: ASGI | str, lifespan: LifespanMode = "auto") -> WorkerFactory:
    def factory(base_path: str, client: WorkerClient) -> AsgiWorker:
        target = load_app(app, base_path) if isinstance(app, str) else app
        return AsgiWorker(target, client, lifespan=lifespan)

    return factory
