"""Console and stats stream relay routes.

Routes:
    /api/v1/instances/{instance_id}/console -> ws://node/exec/{containerId}
    /api/v1/instances/{instance_id}/stats   -> ws://node/stats/{containerId}/{volumeId}

The client socket is accepted first so rejections can carry a 1008 close
reason. When either side closes, the other is closed too. A node-side
failure produces one diagnostic frame and a 1011 close; there is no
automatic reconnect.
"""

import asyncio
import contextlib
import logging

import websockets
from fastapi import APIRouter
from starlette.websockets import WebSocket, WebSocketDisconnect

from skyport.app.api.v1.dependencies import get_control_plane
from skyport.app.config import get_settings
from skyport.app.metrics.collector import RELAY_ACTIVE_SESSIONS, RELAY_ERRORS
from skyport.core.domain import StreamKind
from skyport.core.logging_schema import Component, LogEvent

from .websocket import (
    auth_frame,
    relay_backend_to_client,
    relay_client_to_backend,
    unavailable_frame,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


async def _reject(websocket: WebSocket, instance_id: str, kind: StreamKind, reason: str) -> None:
    logger.info(
        "Relay rejected: %s",
        reason,
        extra={
            "event": LogEvent.RELAY_REJECTED,
            "component": Component.RELAY,
            "instance_id": instance_id,
            "kind": kind.value,
        },
    )
    await websocket.close(code=POLICY_VIOLATION, reason=reason)


async def _fail(websocket: WebSocket, instance_id: str, kind: StreamKind, error_type: str, exc: BaseException) -> None:
    """Send the single diagnostic frame and close the client with 1011."""
    RELAY_ERRORS.labels(kind=kind.value, error_type=error_type).inc()
    logger.warning(
        "Node stream unavailable for %s: %s",
        instance_id,
        exc,
        extra={
            "event": LogEvent.RELAY_UPSTREAM_ERROR,
            "component": Component.RELAY,
            "instance_id": instance_id,
            "kind": kind.value,
            "error_type": error_type,
        },
    )
    with contextlib.suppress(Exception):
        await websocket.send_text(unavailable_frame(kind))
    with contextlib.suppress(Exception):
        await websocket.close(code=INTERNAL_ERROR, reason="Node unavailable")


async def relay_stream(websocket: WebSocket, instance_id: str, kind: StreamKind) -> None:
    """Authorize the client, open the node stream and relay both directions."""
    settings = get_settings()
    plane = get_control_plane()

    await websocket.accept()

    user = await plane.users.resolve_session(
        websocket.cookies.get(settings.session.cookie_name)
    )
    if user is None:
        await _reject(websocket, instance_id, kind, "Authorization required")
        return

    instance = await plane.registry.get_instance(instance_id)
    if instance is None or not instance.container_id:
        await _reject(websocket, instance_id, kind, "Invalid instance or ID")
        return

    if not await plane.guard.is_authorized(user.user_id, instance.id):
        await _reject(websocket, instance_id, kind, "Unauthorized access")
        return

    if await plane.guard.is_suspended(user, instance):
        await _reject(websocket, instance_id, kind, "Instance suspended")
        return

    node = await plane.registry.resolve_node(instance)
    client = await plane.clients.for_node(node)
    if kind == StreamKind.CONSOLE:
        upstream_uri = client.exec_url(instance.container_id)
    else:
        upstream_uri = client.stats_url(instance.container_id, instance.volume_id)

    try:
        backend_ws = await websockets.connect(
            upstream_uri,
            open_timeout=settings.relay.open_timeout,
            ping_interval=settings.relay.ping_interval,
            ping_timeout=settings.relay.ping_timeout,
            max_size=settings.relay.max_size,
        )
    except websockets.InvalidURI as exc:
        await _fail(websocket, instance_id, kind, "invalid_uri", exc)
        return
    except websockets.InvalidHandshake as exc:
        await _fail(websocket, instance_id, kind, "handshake", exc)
        return
    except Exception as exc:
        await _fail(websocket, instance_id, kind, "connect", exc)
        return

    RELAY_ACTIVE_SESSIONS.labels(kind=kind.value).inc()
    logger.info(
        "Relay opened",
        extra={
            "event": LogEvent.RELAY_OPENED,
            "component": Component.RELAY,
            "instance_id": instance_id,
            "user_id": user.user_id,
            "kind": kind.value,
        },
    )

    try:
        async with backend_ws:
            await backend_ws.send(auth_frame(node.api_key))

            to_backend = asyncio.create_task(relay_client_to_backend(websocket, backend_ws))
            to_client = asyncio.create_task(relay_backend_to_client(websocket, backend_ws))
            done, pending = await asyncio.wait(
                {to_backend, to_client}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task

            if to_client in done and to_client.exception() is not None:
                exc = to_client.exception()
                if isinstance(exc, websockets.ConnectionClosedError):
                    await _fail(websocket, instance_id, kind, "closed", exc)
                elif not isinstance(exc, (WebSocketDisconnect, websockets.ConnectionClosedOK)):
                    await _fail(websocket, instance_id, kind, "relay", exc)
            elif to_backend in done and to_backend.exception() is not None:
                exc = to_backend.exception()
                if isinstance(exc, websockets.ConnectionClosedError):
                    await _fail(websocket, instance_id, kind, "closed", exc)
    except websockets.ConnectionClosedError as exc:
        await _fail(websocket, instance_id, kind, "closed", exc)
    except Exception as exc:
        logger.error("Relay error for %s: %s", instance_id, exc)
    finally:
        RELAY_ACTIVE_SESSIONS.labels(kind=kind.value).dec()
        with contextlib.suppress(Exception):
            await websocket.close()
        logger.info(
            "Relay closed",
            extra={
                "event": LogEvent.RELAY_CLOSED,
                "component": Component.RELAY,
                "instance_id": instance_id,
                "kind": kind.value,
            },
        )


@router.websocket("/instances/{instance_id}/console")
async def console_stream(websocket: WebSocket, instance_id: str) -> None:
    await relay_stream(websocket, instance_id, StreamKind.CONSOLE)


@router.websocket("/instances/{instance_id}/stats")
async def stats_stream(websocket: WebSocket, instance_id: str) -> None:
    await relay_stream(websocket, instance_id, StreamKind.STATS)
