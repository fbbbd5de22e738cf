"""Panel Service: panels, their administrators and expert membership."""

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import Conflict, InvalidArgument, NotFound, Unauthorized
from ..models import Expert, ExpertStatus, Panel, PanelStatus

logger = logging.getLogger(__name__)


@dataclass
class CreatePanelInput:
    name: str
    description: str = ""
    expert_ids: list[str] | None = None


@dataclass
class UpdatePanelInput:
    name: str | None = None
    description: str | None = None


class PanelService:
    """Panel CRUD and membership changes.

    Member lists are JSON arrays on the panel row. Every change locks the row
    and assigns a new list so concurrent edits cannot drop each other.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_panel(self, input: CreatePanelInput, creator_id: str) -> Panel:
        name = (input.name or "").strip()
        if not name:
            raise InvalidArgument("Panel name cannot be empty")

        panel = Panel(
            name=name,
            description=input.description or "",
            creator_id=creator_id,
            admin_ids=[creator_id],
            expert_ids=list(dict.fromkeys(input.expert_ids or [])),
            status=PanelStatus.ACTIVE,
        )
        self._session.add(panel)
        await self._session.flush()

        logger.info(f"Panel {panel.id} created by {creator_id}")
        return panel

    async def get_panel(self, panel_id: str) -> Panel:
        panel = await self._session.get(Panel, panel_id)
        if panel is None:
            raise NotFound(f"Panel {panel_id} not found")
        return panel

    async def list_panels_for_user(self, user_id: str, include_archived: bool = False) -> list[Panel]:
        """Panels where the user is an admin or an expert, newest first."""
        stmt = select(Panel).order_by(Panel.created_at.desc())
        if not include_archived:
            stmt = stmt.where(Panel.status == PanelStatus.ACTIVE)
        result = await self._session.execute(stmt)
        # Membership lives in JSON arrays, filtered here to stay portable
        return [p for p in result.scalars().all() if p.is_member(user_id)]

    async def update_panel(self, panel_id: str, input: UpdatePanelInput, user_id: str) -> Panel:
        panel = await self._lock_panel(panel_id)
        self._require_admin(panel, user_id)

        if input.name is not None:
            name = input.name.strip()
            if not name:
                raise InvalidArgument("Panel name cannot be empty")
            panel.name = name
        if input.description is not None:
            panel.description = input.description

        await self._session.flush()
        return panel

    async def archive_panel(self, panel_id: str, user_id: str) -> Panel:
        panel = await self._lock_panel(panel_id)
        self._require_admin(panel, user_id)
        panel.status = PanelStatus.ARCHIVED
        await self._session.flush()
        logger.info(f"Panel {panel_id} archived by {user_id}")
        return panel

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    async def add_expert(self, panel_id: str, expert_uid: str, user_id: str | None = None) -> Panel:
        """Add a user to the panel's experts. Idempotent.

        ``user_id`` is the acting admin; None for system actions such as an
        accepted invitation.
        """
        panel = await self._lock_panel(panel_id)
        if user_id is not None:
            self._require_admin(panel, user_id)
        if expert_uid not in (panel.expert_ids or []):
            panel.expert_ids = [*(panel.expert_ids or []), expert_uid]
            await self._session.flush()
        return panel

    async def remove_expert(self, panel_id: str, expert_uid: str, user_id: str) -> Panel:
        panel = await self._lock_panel(panel_id)
        self._require_admin(panel, user_id)
        panel.expert_ids = [e for e in panel.expert_ids or [] if e != expert_uid]
        await self._session.flush()
        return panel

    async def add_admin(self, panel_id: str, admin_uid: str, user_id: str) -> Panel:
        panel = await self._lock_panel(panel_id)
        self._require_admin(panel, user_id)
        if admin_uid not in (panel.admin_ids or []):
            panel.admin_ids = [*(panel.admin_ids or []), admin_uid]
            await self._session.flush()
        return panel

    async def remove_admin(self, panel_id: str, admin_uid: str, user_id: str) -> Panel:
        panel = await self._lock_panel(panel_id)
        self._require_admin(panel, user_id)

        remaining = [a for a in panel.admin_ids or [] if a != admin_uid]
        if not remaining:
            raise Conflict("A panel must keep at least one admin")
        panel.admin_ids = remaining
        await self._session.flush()
        return panel

    async def list_experts(self, panel_id: str, status: ExpertStatus | None = None) -> Sequence[Expert]:
        await self.get_panel(panel_id)
        stmt = select(Expert).where(Expert.panel_id == panel_id)
        if status is not None:
            stmt = stmt.where(Expert.status == status)
        result = await self._session.execute(stmt.order_by(Expert.invited_at.asc()))
        return result.scalars().all()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _lock_panel(self, panel_id: str) -> Panel:
        result = await self._session.execute(
            select(Panel)
            .where(Panel.id == panel_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        panel = result.scalar_one_or_none()
        if panel is None:
            raise NotFound(f"Panel {panel_id} not found")
        return panel

    @staticmethod
    def _require_admin(panel: Panel, user_id: str) -> None:
        if not panel.is_admin(user_id):
            raise Unauthorized("Only panel admins can manage this panel")
