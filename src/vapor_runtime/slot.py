from __future__ import annotations

from aws_lambda_powertools import Logger

from .models import CanonicalResponse

logger = Logger()


class SlotNotDrainedError(RuntimeError):
    """The slot still held a response when a new invocation started."""


class ResponseAlreadySetError(RuntimeError):
    """A second response was written before the slot was drained."""


class ResponseSlot:
    """Holds at most one pending response between the worker and the bridge.

    The worker writes once per invocation through ``put``; the bridge reads
    and clears through ``drain``. A second ``put`` before ``drain`` replaces
    the first, unless ``strict`` is set, in which case it raises
    ``ResponseAlreadySetError``.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict
        self._response: CanonicalResponse | None = None

    @property
    def is_empty(self) -> bool:
        return self._response is None

    def put(self, response: CanonicalResponse) -> None:
        if self._response is not None:
            if self.strict:
                raise ResponseAlreadySetError("Response slot already holds an undrained response")
            logger.warning(
                "Overwriting undrained response",
                extra={"previous_status": self._response.status, "status": response.status},
            )
        self._response = response

    def drain(self) -> CanonicalResponse | None:
        response, self._response = self._response, None
        return response
