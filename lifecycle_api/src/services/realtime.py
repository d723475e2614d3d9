from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import DefaultDict, Dict, List, Optional
from uuid import UUID

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from src.core.view_mode import DocType
from src.schemas.realtime import TransitionEvent, WsEnvelope

logger = logging.getLogger(__name__)

TRANSITION_EVENT = "document.transitioned"


def _is_closed(ws: WebSocket) -> bool:
    return WebSocketState.DISCONNECTED in (ws.application_state, ws.client_state)


class BroadcastManager:
    """
    In-process fan-out of lifecycle events to WebSocket subscribers.

    Topics:
      - lifecycle:{tenant_id}                 every document transition of the tenant
      - lifecycle:{tenant_id}:{entity_type}   transitions of one document family

    Each subscriber is registered with its view mode; events of T2 documents
    only reach subscribers in extended mode. Only this process's sockets are
    reached; events are published after the transition commits and are not
    replayed to late subscribers.
    """

    def __init__(self) -> None:
        # topic -> {socket: subscribed in extended mode}
        self._subscribers: DefaultDict[str, Dict[WebSocket, bool]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    # PUBLIC_INTERFACE
    @staticmethod
    def lifecycle_topic(tenant_id: UUID | str, entity_type: Optional[str] = None) -> str:
        topic = f"lifecycle:{tenant_id}"
        return f"{topic}:{entity_type}" if entity_type else topic

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    # PUBLIC_INTERFACE
    async def connect(self, topic: str, websocket: WebSocket, *, extended: bool = False) -> None:
        """Subscribe an accepted websocket to `topic`; `extended` lets it receive T2 events."""
        async with self._lock:
            self._subscribers[topic][websocket] = extended
            count = len(self._subscribers[topic])
        logger.info("WebSocket subscribed topic=%s subscribers=%d", topic, count)

    # PUBLIC_INTERFACE
    async def disconnect(self, topic: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._subscribers.get(topic)
            if sockets is None:
                return
            sockets.pop(websocket, None)
            if not sockets:
                del self._subscribers[topic]
        logger.info("WebSocket unsubscribed topic=%s", topic)

    # PUBLIC_INTERFACE
    async def broadcast(self, topic: str, message: dict, *, extended_only: bool = False) -> int:
        """
        Send `message` to every live subscriber of `topic`, or only to the
        extended-mode ones when `extended_only` is set.

        Sockets that are closed or fail to send are unsubscribed. Returns the
        number of sockets reached.
        """
        async with self._lock:
            targets = [ws for ws, extended in self._subscribers.get(topic, {}).items() if extended or not extended_only]
        dead: List[WebSocket] = []
        delivered = 0
        for ws in targets:
            if _is_closed(ws):
                dead.append(ws)
                continue
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError):
                logger.warning("Dropping websocket on topic=%s after failed send", topic, exc_info=True)
                dead.append(ws)
            else:
                delivered += 1
        for ws in dead:
            await self.disconnect(topic, ws)
        return delivered

    # PUBLIC_INTERFACE
    async def publish_transition(self, tenant_id: UUID | str, event: TransitionEvent) -> None:
        """Publish a committed transition to the tenant topic and to its entity-type topic."""
        extended_only = event.doc_type != DocType.T1.value
        message = WsEnvelope(
            type=TRANSITION_EVENT,
            payload=event.model_dump(mode="json"),
            user_id=event.user_id,
            channel=event.entity_type,
        ).model_dump(mode="json")
        for topic in (self.lifecycle_topic(tenant_id), self.lifecycle_topic(tenant_id, event.entity_type)):
            await self.broadcast(topic, message, extended_only=extended_only)


broadcast_manager = BroadcastManager()
