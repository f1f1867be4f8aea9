"""User directory: session lookup and instance access grants."""

import asyncio
import logging

from skyport.core.errors import UserNotFoundError
from skyport.core.logging_schema import LogEvent
from skyport.core.models import User
from skyport.services.registry import InstanceRegistry

logger = logging.getLogger(__name__)


def session_key(token: str) -> str:
    return f"{token}_session"


class UserDirectory:
    """Reads users from the registry's ``users`` list.

    Sessions are issued elsewhere; this only resolves ``<token>_session``
    to a user id.
    """

    def __init__(self, registry: InstanceRegistry) -> None:
        self._registry = registry
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> User | None:
        for user in await self._registry.list_users():
            if user.user_id == user_id:
                return user
        return None

    async def get_by_username(self, username: str) -> User | None:
        for user in await self._registry.list_users():
            if user.username == username:
                return user
        return None

    async def resolve_session(self, token: str | None) -> User | None:
        """Map a session token to its user, or None."""
        if not token:
            return None
        user_id = await self._registry.kv.get(session_key(token))
        if not user_id:
            return None
        return await self.get(str(user_id))

    async def list_with_access(self, instance_id: str) -> list[User]:
        return [
            u for u in await self._registry.list_users() if instance_id in u.access_to
        ]

    async def grant(self, instance_id: str, username: str) -> User:
        """Add instance_id to the user's accessTo. Ownership is unchanged."""
        async with self._lock:
            users = await self._registry.list_users()
            user = next((u for u in users if u.username == username), None)
            if user is None:
                raise UserNotFoundError()
            if instance_id not in user.access_to:
                user.access_to.append(instance_id)
            await self._registry.save_users(users)

        logger.info(
            "Access granted",
            extra={
                "event": LogEvent.AUDIT,
                "instance_id": instance_id,
                "user_id": user.user_id,
            },
        )
        return user

    async def revoke(self, instance_id: str, username: str) -> User:
        async with self._lock:
            users = await self._registry.list_users()
            user = next((u for u in users if u.username == username), None)
            if user is None:
                raise UserNotFoundError()
            user.access_to = [i for i in user.access_to if i != instance_id]
            await self._registry.save_users(users)

        logger.info(
            "Access revoked",
            extra={
                "event": LogEvent.AUDIT,
                "instance_id": instance_id,
                "user_id": user.user_id,
            },
        )
        return user

    async def revoke_everywhere(self, instance_id: str) -> None:
        """Drop instance_id from every user's accessTo (after deletion)."""
        async with self._lock:
            users = await self._registry.list_users()
            changed = False
            for user in users:
                if instance_id in user.access_to:
                    user.access_to = [i for i in user.access_to if i != instance_id]
                    changed = True
            if changed:
                await self._registry.save_users(users)
