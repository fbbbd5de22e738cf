"""
Tests for panel invitations and panel membership.

These tests verify:
1. CREATE: Invitations are admin-only and create an invited Expert record
2. BULK: Pending duplicates are reported, not raised
3. ACCEPT: The invitee joins the panel; expired invitations are marked
4. PANELS: Admin-only membership changes and the last-admin rule
"""

from datetime import timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from delphi_panels.core.errors import (
    Conflict,
    Internal,
    InvalidArgument,
    ServiceUnavailable,
    Unauthorized,
)
from delphi_panels.models import Expert, ExpertStatus, InvitationStatus, utcnow
from delphi_panels.services.email_service import EmailConfig, EmailService
from delphi_panels.services.invitations import InvitationService
from delphi_panels.services.panels import PanelService


def email_service(status_code: int = 202, sent: list | None = None) -> EmailService:
    def handler(request: httpx.Request) -> httpx.Response:
        if sent is not None:
            sent.append(request)
        return httpx.Response(status_code)

    return EmailService(config=EmailConfig(api_key="SG.key"), transport=httpx.MockTransport(handler))


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateInvitation:
    """Tests for creating invitations."""

    async def test_create_invitation(self, session: AsyncSession, panel, users):
        service = InvitationService(session)

        invitation = await service.create_invitation(
            panel.id, "  New.Expert@Example.com ", invited_by=users["admin"].id
        )

        assert invitation.email == "new.expert@example.com"
        assert invitation.status == InvitationStatus.PENDING
        assert invitation.panel_name == panel.name
        assert invitation.token
        assert invitation.expires_at > utcnow() + timedelta(days=6)

        expert = await session.get(Expert, invitation.expert_id)
        assert expert.status == ExpertStatus.INVITED
        assert expert.email == "new.expert@example.com"

    async def test_only_admins_invite(self, session: AsyncSession, panel, users):
        with pytest.raises(Unauthorized):
            await InvitationService(session).create_invitation(
                panel.id, "x@example.com", invited_by=users["expert1"].id
            )

    async def test_invalid_email(self, session: AsyncSession, panel, users):
        with pytest.raises(InvalidArgument):
            await InvitationService(session).create_invitation(
                panel.id, "not-an-email", invited_by=users["admin"].id
            )

    async def test_bulk_reports_pending_duplicates(self, session: AsyncSession, panel, users):
        sent: list = []
        service = InvitationService(session, email_service=email_service(sent=sent))
        await service.create_invitation(panel.id, "dup@example.com", invited_by=users["admin"].id)

        result = await service.send_bulk_invitations(
            panel.id,
            ["dup@example.com", "fresh@example.com", "FRESH@example.com"],
            invited_by=users["admin"].id,
        )

        assert [i.email for i in result.sent] == ["fresh@example.com"]
        assert result.failed == [{"email": "dup@example.com", "reason": "Invitation already pending"}]
        assert [e.invitation_id for e in result.events] == [result.sent[0].id]
        assert len(sent) == 1

    async def test_bulk_reports_delivery_failures(self, session: AsyncSession, panel, users):
        service = InvitationService(session, email_service=email_service(status_code=500))

        result = await service.send_bulk_invitations(panel.id, ["a@example.com"], invited_by=users["admin"].id)

        assert len(result.sent) == 1
        assert result.failed == [{"email": "a@example.com", "reason": "Email delivery failed"}]

    async def test_send_email_requires_configuration(self, session: AsyncSession, panel, users):
        service = InvitationService(session, email_service=EmailService(config=EmailConfig(api_key=None)))
        invitation = await service.create_invitation(panel.id, "a@example.com", invited_by=users["admin"].id)

        with pytest.raises(ServiceUnavailable):
            await service.send_invitation_email(invitation.id)

    async def test_send_email_provider_failure_is_internal(self, session: AsyncSession, panel, users):
        service = InvitationService(session, email_service=email_service(status_code=400))
        invitation = await service.create_invitation(panel.id, "a@example.com", invited_by=users["admin"].id)

        with pytest.raises(Internal):
            await service.send_invitation_email(invitation.id)

    async def test_send_email_requires_id(self, session: AsyncSession):
        with pytest.raises(InvalidArgument):
            await InvitationService(session, email_service=email_service()).send_invitation_email(None)


# =============================================================================
# TEST: ACCEPT & DECLINE
# =============================================================================


class TestResolveInvitation:
    """Tests for accepting, declining and expiring invitations."""

    async def test_accept_adds_expert_to_panel(self, session: AsyncSession, panel, users):
        service = InvitationService(session)
        invitation = await service.create_invitation(panel.id, "out@example.com", invited_by=users["admin"].id)

        accepted = await service.accept(invitation.id, users["outsider"])

        assert accepted.status == InvitationStatus.ACCEPTED
        assert accepted.accepted_at is not None
        assert users["outsider"].id in panel.expert_ids

        expert = await session.get(Expert, invitation.expert_id)
        assert expert.status == ExpertStatus.ACCEPTED
        assert expert.user_id == users["outsider"].id

    async def test_accept_twice_conflicts(self, session: AsyncSession, panel, users):
        service = InvitationService(session)
        invitation = await service.create_invitation(panel.id, "out@example.com", invited_by=users["admin"].id)
        await service.accept(invitation.id, users["outsider"])

        with pytest.raises(Conflict):
            await service.accept(invitation.id, users["outsider"])

    async def test_accept_with_other_email_is_unauthorized(self, session: AsyncSession, panel, users):
        service = InvitationService(session)
        invitation = await service.create_invitation(panel.id, "someone@example.com", invited_by=users["admin"].id)

        with pytest.raises(Unauthorized):
            await service.accept(invitation.id, users["outsider"])

    async def test_expired_invitation_is_marked(self, session: AsyncSession, panel, users):
        service = InvitationService(session)
        invitation = await service.create_invitation(panel.id, "out@example.com", invited_by=users["admin"].id)
        invitation.expires_at = utcnow() - timedelta(minutes=1)
        await session.flush()

        with pytest.raises(Conflict):
            await service.accept(invitation.id, users["outsider"])

        assert invitation.status == InvitationStatus.EXPIRED
        assert users["outsider"].id not in panel.expert_ids

    async def test_decline(self, session: AsyncSession, panel, users):
        service = InvitationService(session)
        invitation = await service.create_invitation(panel.id, "out@example.com", invited_by=users["admin"].id)

        declined = await service.decline(invitation.id, users["outsider"])

        assert declined.status == InvitationStatus.DECLINED
        expert = await session.get(Expert, invitation.expert_id)
        assert expert.status == ExpertStatus.DECLINED

    async def test_resend_resets_expiry(self, session: AsyncSession, panel, users):
        service = InvitationService(session, email_service=email_service())
        invitation = await service.create_invitation(panel.id, "out@example.com", invited_by=users["admin"].id)
        invitation.expires_at = utcnow() + timedelta(hours=1)

        resent = await service.resend(invitation.id, users["admin"].id)

        assert resent.expires_at > utcnow() + timedelta(days=6)

    async def test_cancel_expires_invitation(self, session: AsyncSession, panel, users):
        service = InvitationService(session)
        invitation = await service.create_invitation(panel.id, "out@example.com", invited_by=users["admin"].id)

        cancelled = await service.cancel(invitation.id, users["admin"].id)

        assert cancelled.status == InvitationStatus.EXPIRED


# =============================================================================
# TEST: PANELS
# =============================================================================


class TestPanelService:
    """Tests for panel membership."""

    async def test_creator_is_admin(self, session: AsyncSession, panel, users):
        assert panel.admin_ids == [users["admin"].id]
        assert panel.member_count == 3

    async def test_list_panels_for_member(self, session: AsyncSession, panel, users):
        service = PanelService(session)

        assert [p.id for p in await service.list_panels_for_user(users["expert1"].id)] == [panel.id]
        assert await service.list_panels_for_user(users["outsider"].id) == []

    async def test_only_admins_add_experts(self, session: AsyncSession, panel, users):
        with pytest.raises(Unauthorized):
            await PanelService(session).add_expert(panel.id, "new-uid", user_id=users["expert1"].id)

    async def test_remove_last_admin_conflicts(self, session: AsyncSession, panel, users):
        with pytest.raises(Conflict):
            await PanelService(session).remove_admin(panel.id, users["admin"].id, user_id=users["admin"].id)

    async def test_add_and_remove_admin(self, session: AsyncSession, panel, users):
        service = PanelService(session)

        await service.add_admin(panel.id, users["expert1"].id, user_id=users["admin"].id)
        updated = await service.remove_admin(panel.id, users["admin"].id, user_id=users["expert1"].id)

        assert updated.admin_ids == [users["expert1"].id]
