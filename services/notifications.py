"""Broadcast-only push notifications over WebSocket connections."""

import logging
from typing import Iterable, List, Set

from fastapi import WebSocket

from models import BorrowedBook

logger = logging.getLogger(__name__)


def due_message(title: str) -> str:
    return f'Reminder: The book "{title}" is due tomorrow.'


def overdue_message(title: str) -> str:
    return f'Overdue Alert: The book "{title}" is overdue. Please return it to avoid further fines.'


class NotificationHub:
    """Tracks open connections and sends the same text to all of them."""

    def __init__(self) -> None:
        self.connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)
        logger.info("WebSocket client connected (%d open)", len(self.connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        logger.info("WebSocket client disconnected (%d open)", len(self.connections))

    async def broadcast(self, message: str) -> int:
        """Send ``message`` to every open connection; returns how many received it."""
        targets = list(self.connections)
        delivered = 0
        for websocket in targets:
            try:
                await websocket.send_text(message)
                delivered += 1
            except Exception as e:  # a closed socket can fail in several ways
                logger.debug("Dropping WebSocket after failed send: %s", e)
                await self.disconnect(websocket)
        return delivered

    async def send_due_notifications(self, loans: Iterable[BorrowedBook]) -> List[str]:
        return await self._broadcast_each(due_message(_title(loan)) for loan in loans)

    async def send_overdue_notifications(self, loans: Iterable[BorrowedBook]) -> List[str]:
        return await self._broadcast_each(overdue_message(_title(loan)) for loan in loans)

    async def _broadcast_each(self, messages: Iterable[str]) -> List[str]:
        sent = []
        for message in messages:
            await self.broadcast(message)
            sent.append(message)
        return sent


def _title(loan: BorrowedBook) -> str:
    return (loan.book or {}).get("title", f"#{loan.book_id}")


notification_hub = NotificationHub()
