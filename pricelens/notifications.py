"""In-process broadcast of settings changes to interested components."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, List, Mapping, Union

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="notifications")

Subscriber = Callable[[Mapping[str, Any]], Union[None, Awaitable[None]]]


class NotificationHub:
    """Best-effort fan-out; a failing subscriber never blocks the others."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def broadcast(self, message: Mapping[str, Any]) -> int:
        """Deliver `message` to every subscriber and return how many accepted it."""
        delivered = 0
        for callback in list(self._subscribers):
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Subscriber rejected %s: %s", message.get("type"), exc)
                continue
            delivered += 1
        return delivered
