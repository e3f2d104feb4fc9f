"""Presence and fan-out for the single chat room.

`SessionRegistry` maps live connections to announced names, `ConnectionManager`
holds the open sockets, and `BroadcastRouter` turns client events into
registry mutations and broadcasts.

All three are driven from one asyncio event loop. Each mutation and the roster
snapshot that follows it run without an intervening `await`, so no locking is
needed.
"""
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from errors import EmptyName, MalformedMessage
from schemas import (
    CHAT_MESSAGE,
    ERROR,
    SET_NAME,
    USERS_UPDATE,
    Envelope,
    chat_message_adapter,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    ANONYMOUS = "anonymous"
    NAMED = "named"


class SessionRegistry:
    def __init__(self):
        self._names: Dict[str, str] = {}

    def set_name(self, connection: str, name: Any) -> bool:
        """Record or overwrite the name for `connection`.

        Blank or non-string names are ignored and reported by returning False.
        A rename keeps the connection's place in the roster.
        """
        if not isinstance(name, str) or not name.strip():
            return False
        self._names[connection] = name.strip()
        return True

    def remove(self, connection: str) -> bool:
        return self._names.pop(connection, None) is not None

    def name_of(self, connection: str) -> Optional[str]:
        return self._names.get(connection)

    def roster_snapshot(self) -> List[str]:
        return list(self._names.values())

    def __contains__(self, connection: object) -> bool:
        return connection in self._names

    def __len__(self) -> int:
        return len(self._names)


class ConnectionManager:
    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection = uuid.uuid4().hex
        self.connections[connection] = websocket
        return connection

    def disconnect(self, connection: str) -> None:
        self.connections.pop(connection, None)

    async def send(self, connection: str, message: Dict[str, Any]) -> bool:
        ws = self.connections.get(connection)
        if ws is None:
            return False
        try:
            await ws.send_json(message)
        except Exception as e:
            logger.warning("Send to %s failed: %s", connection, e)
            self.connections.pop(connection, None)
            return False
        return True

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send `message` once to every open socket and return how many got it.

        A socket that fails is dropped from the fan-out set; its own endpoint
        still reports the disconnect.
        """
        dead = []
        delivered = 0
        for connection, ws in list(self.connections.items()):
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("Broadcast to %s failed: %s", connection, e)
                dead.append(connection)
        for connection in dead:
            self.connections.pop(connection, None)
        return delivered

    def __len__(self) -> int:
        return len(self.connections)


class BroadcastRouter:
    def __init__(
        self,
        registry: SessionRegistry,
        connections: ConnectionManager,
        *,
        time_format: str = "%H:%M",
        enforce_sender_name: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.registry = registry
        self.connections = connections
        self.time_format = time_format
        self.enforce_sender_name = enforce_sender_name
        self.clock = clock

    def state(self, connection: str) -> ConnectionState:
        return ConnectionState.NAMED if connection in self.registry else ConnectionState.ANONYMOUS

    def stamp(self) -> str:
        return self.clock().strftime(self.time_format)

    async def broadcast_roster(self) -> None:
        await self.connections.broadcast({"event": USERS_UPDATE, "data": self.registry.roster_snapshot()})

    async def on_identity_announce(self, connection: str, name: Any) -> None:
        if not self.registry.set_name(connection, name):
            raise EmptyName("Name must not be empty")
        logger.info("Connection %s is now %r", connection, self.registry.name_of(connection))
        await self.broadcast_roster()

    async def on_chat_message(self, connection: str, payload: Any) -> Dict[str, Any]:
        try:
            message = chat_message_adapter.validate_python(payload)
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'message'}: {err['msg']}" for err in exc.errors()
            )
            raise MalformedMessage(f"Invalid chat message ({errors})") from exc

        if self.enforce_sender_name:
            registered = self.registry.name_of(connection)
            if registered is None:
                raise MalformedMessage("Announce a name before sending messages")
            message.name = registered

        outgoing = message.model_dump()
        outgoing["time"] = self.stamp()
        delivered = await self.connections.broadcast({"event": CHAT_MESSAGE, "data": outgoing})
        logger.debug("Relayed %s message from %s to %d clients", outgoing["type"], connection, delivered)
        return outgoing

    async def on_disconnect(self, connection: str) -> None:
        if self.registry.remove(connection):
            await self.broadcast_roster()

    async def dispatch(self, connection: str, frame: Any) -> None:
        try:
            envelope = Envelope.model_validate(frame)
        except ValidationError as exc:
            raise MalformedMessage("Frame must be an object with an 'event' field") from exc

        if envelope.event == SET_NAME:
            await self.on_identity_announce(connection, envelope.data)
        elif envelope.event == CHAT_MESSAGE:
            await self.on_chat_message(connection, envelope.data)
        else:
            raise MalformedMessage(f"Unknown event {envelope.event}")

    async def reject(self, connection: str, exc: MalformedMessage) -> None:
        logger.warning("Dropped frame from %s: %s", connection, exc.message)
        await self.connections.send(connection, {"event": ERROR, "data": {"error": exc.message, "code": exc.code}})
