"""
Invitation Service: token-bearing invitations for experts to join a panel.

Lifecycle: pending -> accepted | declined | expired.
- Invitations expire ``invitation_expiry_days`` after they were (re)sent
- An expired pending invitation is marked expired when someone tries it
- Accepting links the user as a panel expert and as the Expert record owner
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    Conflict,
    Internal,
    InvalidArgument,
    NotFound,
    ServiceUnavailable,
    Unauthorized,
)
from ..models import (
    Expert,
    ExpertStatus,
    InvitationStatus,
    Panel,
    PanelInvitation,
    User,
    as_utc,
    utcnow,
)
from .email_service import EmailDeliveryError, EmailService, build_invitation_email
from .events import InvitationCreated
from .panels import PanelService

logger = logging.getLogger(__name__)


@dataclass
class BulkInvitationResult:
    """Outcome of a bulk invite. Failures are reported, never raised."""
    sent: list[PanelInvitation] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    events: list[InvitationCreated] = field(default_factory=list)


class InvitationService:
    """Creates, delivers and resolves panel invitations."""

    def __init__(self, session: AsyncSession, email_service: EmailService | None = None):
        self._session = session
        self._email = email_service or EmailService()
        self._expiry_days = get_settings().invitation_expiry_days

    # =========================================================================
    # CREATE & SEND
    # =========================================================================

    async def create_invitation(
        self,
        panel_id: str,
        email: str,
        invited_by: str,
        invited_by_name: str | None = None,
        message: str | None = None,
    ) -> PanelInvitation:
        """Create a pending invitation and the matching invited Expert record."""
        normalized = (email or "").strip().lower()
        if not normalized or "@" not in normalized:
            raise InvalidArgument(f"Invalid email address: {email!r}")

        panel = await self._session.get(Panel, panel_id)
        if panel is None:
            raise NotFound(f"Panel {panel_id} not found")
        if not panel.is_admin(invited_by):
            raise Unauthorized("Only panel admins can invite experts")

        expert = await self._upsert_expert(panel.id, normalized, invited_by)

        invitation = PanelInvitation(
            panel_id=panel.id,
            panel_name=panel.name,
            email=normalized,
            status=InvitationStatus.PENDING,
            invited_by=invited_by,
            invited_by_name=invited_by_name,
            message=message,
            token=str(uuid4()),
            expires_at=utcnow() + timedelta(days=self._expiry_days),
            expert_id=expert.id,
        )
        self._session.add(invitation)
        await self._session.flush()

        logger.info(f"Invitation {invitation.id} created for {normalized} on panel {panel.id}")
        return invitation

    async def send_bulk_invitations(
        self,
        panel_id: str,
        emails: Sequence[str],
        invited_by: str,
        invited_by_name: str | None = None,
        message: str | None = None,
    ) -> BulkInvitationResult:
        """Invite every address that has no pending invitation yet.

        Email delivery is attempted for each new invitation when email is
        configured. A delivery failure is reported but keeps the invitation.
        """
        result = BulkInvitationResult()

        for email in dict.fromkeys(e.strip().lower() for e in emails if e and e.strip()):
            if await self._pending_for(panel_id, email) is not None:
                result.failed.append({"email": email, "reason": "Invitation already pending"})
                continue

            try:
                invitation = await self.create_invitation(
                    panel_id, email, invited_by, invited_by_name, message
                )
            except InvalidArgument as e:
                result.failed.append({"email": email, "reason": e.message})
                continue

            result.sent.append(invitation)
            result.events.append(InvitationCreated(invitation_id=invitation.id))

            if self._email.is_configured:
                try:
                    await self._deliver(invitation)
                except EmailDeliveryError as e:
                    logger.error(f"Failed to email invitation {invitation.id}: {e}")
                    result.failed.append({"email": email, "reason": "Email delivery failed"})

        logger.info(
            f"Bulk invite on panel {panel_id}: {len(result.sent)} created, {len(result.failed)} failed"
        )
        return result

    async def send_invitation_email(self, invitation_id: str | None) -> PanelInvitation:
        """Send (or re-send) the email for a pending invitation."""
        if not invitation_id:
            raise InvalidArgument("invitationId is required")
        if not self._email.is_configured:
            raise ServiceUnavailable("Email delivery is not configured")

        invitation = await self._session.get(PanelInvitation, invitation_id)
        if invitation is None:
            raise NotFound(f"Invitation {invitation_id} not found")
        if invitation.status != InvitationStatus.PENDING:
            raise Conflict(f"Invitation is {invitation.status.value}, not pending")

        try:
            await self._deliver(invitation)
        except EmailDeliveryError as e:
            logger.error(f"Failed to email invitation {invitation_id}: {e}")
            raise Internal("Failed to send invitation email") from e

        return invitation

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_invitation(self, invitation_id: str) -> PanelInvitation:
        invitation = await self._session.get(PanelInvitation, invitation_id)
        if invitation is None:
            raise NotFound(f"Invitation {invitation_id} not found")
        return invitation

    async def get_by_token(self, token: str) -> PanelInvitation:
        result = await self._session.execute(
            select(PanelInvitation).where(PanelInvitation.token == token)
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFound("Invitation not found")
        return invitation

    async def list_for_panel(self, panel_id: str) -> Sequence[PanelInvitation]:
        result = await self._session.execute(
            select(PanelInvitation)
            .where(PanelInvitation.panel_id == panel_id)
            .order_by(PanelInvitation.created_at.desc())
        )
        return result.scalars().all()

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def accept(self, invitation_id: str, user: User) -> PanelInvitation:
        invitation = await self._pending_or_conflict(invitation_id)
        self._require_invitee(invitation, user)

        now = utcnow()
        invitation.status = InvitationStatus.ACCEPTED
        invitation.accepted_at = now

        await PanelService(self._session).add_expert(invitation.panel_id, user.id)

        if invitation.expert_id:
            expert = await self._session.get(Expert, invitation.expert_id)
            if expert is not None:
                expert.status = ExpertStatus.ACCEPTED
                expert.accepted_at = now
                expert.user_id = user.id
                if not expert.name and user.display_name:
                    expert.name = user.display_name

        await self._session.flush()
        logger.info(f"Invitation {invitation_id} accepted by {user.id}")
        return invitation

    async def decline(self, invitation_id: str, user: User) -> PanelInvitation:
        invitation = await self._pending_or_conflict(invitation_id)
        self._require_invitee(invitation, user)
        invitation.status = InvitationStatus.DECLINED
        invitation.declined_at = utcnow()

        if invitation.expert_id:
            expert = await self._session.get(Expert, invitation.expert_id)
            if expert is not None:
                expert.status = ExpertStatus.DECLINED

        await self._session.flush()
        return invitation

    async def resend(self, invitation_id: str, user_id: str) -> PanelInvitation:
        """Reset the expiry of a pending invitation and email it again."""
        invitation = await self.get_invitation(invitation_id)
        await self._require_panel_admin(invitation.panel_id, user_id)
        if invitation.status != InvitationStatus.PENDING:
            raise Conflict("Only pending invitations can be resent")

        invitation.expires_at = utcnow() + timedelta(days=self._expiry_days)
        await self._session.flush()

        if self._email.is_configured:
            try:
                await self._deliver(invitation)
            except EmailDeliveryError as e:
                logger.error(f"Failed to resend invitation {invitation_id}: {e}")
                raise Internal("Failed to send invitation email") from e
        return invitation

    async def cancel(self, invitation_id: str, user_id: str) -> PanelInvitation:
        invitation = await self.get_invitation(invitation_id)
        await self._require_panel_admin(invitation.panel_id, user_id)
        invitation.status = InvitationStatus.EXPIRED
        await self._session.flush()
        return invitation

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _pending_or_conflict(self, invitation_id: str) -> PanelInvitation:
        invitation = await self.get_invitation(invitation_id)
        if invitation.status != InvitationStatus.PENDING:
            raise Conflict(f"Invitation is {invitation.status.value}, not pending")

        if as_utc(invitation.expires_at) <= utcnow():
            invitation.status = InvitationStatus.EXPIRED
            await self._session.flush()
            raise Conflict("Invitation has expired")
        return invitation

    @staticmethod
    def _require_invitee(invitation: PanelInvitation, user: User) -> None:
        # Users without a known email are trusted on token possession
        if user.email and user.email.lower() != invitation.email:
            raise Unauthorized("This invitation was sent to a different email address")

    async def _pending_for(self, panel_id: str, email: str) -> PanelInvitation | None:
        result = await self._session.execute(
            select(PanelInvitation).where(
                PanelInvitation.panel_id == panel_id,
                PanelInvitation.email == email,
                PanelInvitation.status == InvitationStatus.PENDING,
            )
        )
        return result.scalars().first()

    async def _upsert_expert(self, panel_id: str, email: str, invited_by: str) -> Expert:
        result = await self._session.execute(
            select(Expert).where(Expert.panel_id == panel_id, Expert.email == email)
        )
        expert = result.scalar_one_or_none()
        if expert is None:
            expert = Expert(
                panel_id=panel_id,
                email=email,
                name="",
                status=ExpertStatus.INVITED,
                invited_by=invited_by,
                invited_at=utcnow(),
            )
            self._session.add(expert)
        elif expert.status != ExpertStatus.ACCEPTED:
            expert.status = ExpertStatus.INVITED
            expert.invited_by = invited_by
            expert.invited_at = utcnow()
        await self._session.flush()
        return expert

    async def _require_panel_admin(self, panel_id: str, user_id: str) -> None:
        panel = await self._session.get(Panel, panel_id)
        if panel is None or not panel.is_admin(user_id):
            raise Unauthorized("Only panel admins can manage invitations")

    async def _deliver(self, invitation: PanelInvitation) -> None:
        message = build_invitation_email(invitation, self._email.config, self._expiry_days)
        await self._email.send(message)
        logger.info(f"Invitation email sent for {invitation.id}")
