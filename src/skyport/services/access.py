"""Authorization Guard: admin override, shared grant, or ownership."""

import logging

from skyport.core.errors import ForbiddenError, InstanceSuspendedError
from skyport.core.models import Instance, User
from skyport.services.registry import InstanceRegistry, instance_key
from skyport.services.users import UserDirectory

logger = logging.getLogger(__name__)


class AccessGuard:
    def __init__(self, registry: InstanceRegistry, users: UserDirectory) -> None:
        self._registry = registry
        self._users = users

    async def is_authorized(self, user_id: str, instance_id: str) -> bool:
        """True for admins, for users granted the instance, and for its owner."""
        user = await self._users.get(user_id)
        if user is None:
            return False
        if user.admin:
            return True
        if instance_id in user.access_to:
            return True
        return instance_id in await self._registry.user_instance_ids(user_id)

    async def is_suspended(self, user: User, instance: Instance) -> bool:
        """Admins bypass the hold; everyone else sees the instance's flag.

        Records that predate the flag get ``suspended=False`` written back.
        """
        if user.admin:
            return False

        raw = await self._registry.kv.get(instance_key(instance.id))
        if raw is not None and "suspended" not in raw:
            await self._registry.update_instance(instance.id, suspended=False)
            return False
        return instance.suspended

    async def authorize(self, user: User, instance: Instance) -> None:
        """Raise ForbiddenError unless the user may act on the instance."""
        if not await self.is_authorized(user.user_id, instance.id):
            logger.info(
                "Access denied to instance %s for user %s", instance.id, user.user_id
            )
            raise ForbiddenError()

    async def ensure_active(self, user: User, instance: Instance) -> None:
        """Raise InstanceSuspendedError when the hold applies to this user."""
        if await self.is_suspended(user, instance):
            raise InstanceSuspendedError()
