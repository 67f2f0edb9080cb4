"""Request/response client for the database worker.

Every call gets a fresh id and a pending future. The worker's response with
the same id resolves the future; responses for ids that are not pending
(unknown, or already timed out) are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from ..protocols import Channel

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class RpcError(Exception):
    """The worker answered a call with an error.

    Attributes:
        request_id: Id of the failed call.
    """

    def __init__(self, message: str, request_id: str | None = None):
        self.request_id = request_id
        super().__init__(message)


class RpcTimeoutError(RpcError):
    """No response arrived within the call's timeout."""


class RpcClient:
    """Correlates requests and responses over a channel.

    Attributes:
        channel: Where requests are posted.
        timeout: Default seconds to wait for a response.
    """

    def __init__(self, channel: Channel | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.channel = channel
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def call(self, action: str, timeout: float | None = None, **payload: Any) -> dict:
        """Send a request and wait for its response.

        Returns:
            The response message.

        Raises:
            RpcTimeoutError: If no response arrives in time.
            RpcError: If the response carries an error.
        """
        if self.channel is None:
            raise RpcError("RPC client has no channel")
        wait = self.timeout if timeout is None else timeout
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self.channel.post({"id": request_id, "action": action, **payload})
            return await asyncio.wait_for(future, wait)
        except asyncio.TimeoutError as exc:
            raise RpcTimeoutError(
                f"{action} timed out after {wait}s", request_id
            ) from exc
        finally:
            self._pending.pop(request_id, None)

    def receive(self, message: dict[str, Any]) -> None:
        """Resolve the pending call a response belongs to."""
        request_id = message.get("id")
        future = self._pending.get(request_id)
        if future is None:
            LOGGER.debug("Ignoring response for unknown request %r", request_id)
            return
        if future.done():
            return
        if message.get("error") is not None:
            future.set_exception(RpcError(str(message["error"]), request_id))
        else:
            future.set_result(message)
