"""API dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Request

from skyport.app.config import get_settings
from skyport.control.plane import ControlPlane
from skyport.core.errors import ForbiddenError, UnauthorizedError
from skyport.core.interfaces import KeyValueStore
from skyport.core.models import User
from skyport.infra.workflow_file import WorkflowFileStore

# Singleton control plane
_plane: ControlPlane | None = None


async def init_control_plane(
    kv: KeyValueStore, store: WorkflowFileStore | None = None
) -> ControlPlane:
    """Build and start the control plane singleton.

    Must be called during app startup, after the key-value store is ready.
    """
    global _plane
    _plane = ControlPlane.build(kv, store)
    await _plane.start()
    return _plane


async def close_control_plane() -> None:
    """Stop background jobs and release node connections."""
    global _plane
    if _plane:
        await _plane.close()
        _plane = None


def get_control_plane() -> ControlPlane:
    """Get control plane singleton.

    Raises:
        RuntimeError: If called before init_control_plane().
    """
    if _plane is None:
        raise RuntimeError("Control plane not initialized. Call init_control_plane() first.")
    return _plane


def reset_control_plane() -> None:
    """Reset control plane singleton (for testing)."""
    global _plane
    _plane = None


Plane = Annotated[ControlPlane, Depends(get_control_plane)]


async def get_current_user(request: Request, plane: Plane) -> User:
    """Resolve the session cookie to a user. Raises UnauthorizedError."""
    token = request.cookies.get(get_settings().session.cookie_name)
    user = await plane.users.resolve_session(token)
    if user is None:
        raise UnauthorizedError()
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def require_admin(user: CurrentUser) -> User:
    if not user.admin:
        raise ForbiddenError("Administrator access required")
    return user


AdminUser = Annotated[User, Depends(require_admin)]
