"""
System Settings Service - maintenance flag and role lookups.
"""

from typing import Any, Final
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trial_clients.db.models import AdminAuditLog, SystemSetting, UserRole, utc_now
from trial_clients.models.domain import MaintenanceState
from trial_clients.observability.logging import get_logger

logger = get_logger(__name__)

MAINTENANCE_KEY: Final = "maintenance_mode"
DEFAULT_MAINTENANCE_MESSAGE: Final = "System is under maintenance. Please try again later."
ROLE_ADMIN: Final = "admin"


class SystemSettingsService:
    """Global key/value settings and user roles."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_maintenance(self) -> MaintenanceState:
        setting = await self._get(MAINTENANCE_KEY)
        if setting is None:
            return MaintenanceState(enabled=False, message="")
        value: dict[str, Any] = setting.value or {}
        return MaintenanceState(
            enabled=bool(value.get("enabled", False)),
            message=str(value.get("message") or DEFAULT_MAINTENANCE_MESSAGE),
        )

    async def is_maintenance_mode(self) -> bool:
        return (await self.get_maintenance()).enabled

    async def maintenance_message(self) -> str:
        return (await self.get_maintenance()).message

    async def maintenance_block(self, user_id: UUID) -> str | None:
        """
        Message to refuse `user_id` with while maintenance is on, else None.

        Admins are never blocked and the flag is not read for them.
        """
        if await self.is_admin(user_id):
            return None
        if not await self.is_maintenance_mode():
            return None
        return await self.maintenance_message()

    async def set_maintenance_mode(
        self, admin_id: UUID, enabled: bool, message: str | None = None
    ) -> MaintenanceState:
        """Flip the maintenance flag; audit logged."""
        value = {"enabled": enabled, "message": message or ""}
        setting = await self._get(MAINTENANCE_KEY)
        if setting is None:
            self.session.add(SystemSetting(key=MAINTENANCE_KEY, value=value, updated_by=admin_id))
        else:
            setting.value = value
            setting.updated_by = admin_id
            setting.updated_at = utc_now()

        self.session.add(
            AdminAuditLog(
                admin_user_id=admin_id,
                action="set_maintenance_mode",
                resource_type="system_setting",
                resource_id=MAINTENANCE_KEY,
                changes=value,
            )
        )
        await self.session.commit()

        logger.info("maintenance_mode_set", admin_id=str(admin_id), enabled=enabled)
        return await self.get_maintenance()

    async def has_role(self, user_id: UUID, role: str) -> bool:
        stmt = select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == role)
        return (await self.session.execute(stmt)).first() is not None

    async def is_admin(self, user_id: UUID) -> bool:
        return await self.has_role(user_id, ROLE_ADMIN)

    async def _get(self, key: str) -> SystemSetting | None:
        stmt = (
            select(SystemSetting)
            .where(SystemSetting.key == key)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()
