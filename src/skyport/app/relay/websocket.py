"""WebSocket relay functions between a client and a node agent stream."""

import json

from starlette.websockets import WebSocket
from websockets.asyncio.client import ClientConnection

from skyport.core.domain import StreamKind

CONSOLE_UNAVAILABLE = (
    "\x1b[31;1mThis instance is unavailable! \n"
    "\x1b[0mThe node agent for this instance appears to be down.\n"
)
STATS_UNAVAILABLE = json.dumps({"error": "Stats service is temporarily unavailable"})


def auth_frame(api_key: str | None) -> str:
    """First frame sent upstream on every node stream."""
    return json.dumps({"event": "auth", "args": [api_key]})


def unavailable_frame(kind: StreamKind) -> str:
    return CONSOLE_UNAVAILABLE if kind == StreamKind.CONSOLE else STATS_UNAVAILABLE


async def relay_client_to_backend(
    client_ws: WebSocket,
    backend_ws: ClientConnection,
) -> None:
    """Relay messages from client WebSocket to the node agent."""
    while True:
        data = await client_ws.receive()
        if data["type"] == "websocket.receive":
            if data.get("text") is not None:
                await backend_ws.send(data["text"])
            elif data.get("bytes") is not None:
                await backend_ws.send(data["bytes"])
        elif data["type"] == "websocket.disconnect":
            break


async def relay_backend_to_client(
    client_ws: WebSocket,
    backend_ws: ClientConnection,
) -> None:
    """Relay messages from the node agent to the client WebSocket.

    Returns when the node closes cleanly; an abnormal close raises
    ``websockets.ConnectionClosedError``.
    """
    async for message in backend_ws:
        if isinstance(message, str):
            await client_ws.send_text(message)
        else:
            await client_ws.send_bytes(message)
