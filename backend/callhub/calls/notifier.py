"""
Outbound delivery seam between call logic and the transport.
"""
from abc import ABC, abstractmethod
from typing import Iterable

from pydantic import BaseModel


class EventSink(ABC):
    """
    Delivers an outbound event to one connection handle.

    Implementations must not raise for a handle that has already gone away;
    delivery to a vanished handle is dropped.
    """

    @abstractmethod
    async def send(self, handle: str, event: BaseModel) -> bool:
        """
        Send ``event`` to ``handle``.

        Returns:
            True if the frame was written
        """
        pass

    async def send_many(self, handles: Iterable[str], event: BaseModel) -> int:
        delivered = 0
        for handle in handles:
            if await self.send(handle, event):
                delivered += 1
        return delivered


__all__ = ['EventSink']
