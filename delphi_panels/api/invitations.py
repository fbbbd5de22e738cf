"""
Invitation API Routes.

Admins invite experts by email; invitees open the emailed link
(GET /invitations/token/{token}, no auth) and then accept or decline while
signed in.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr, Field

from ..core import Conflict, CurrentUserDep, SessionDep, Unauthorized
from ..schemas import (
    BulkInvitationFailure,
    BulkInvitationResponse,
    InvitationPreviewResponse,
    InvitationResponse,
)
from ..schemas.base import DelphiBaseModel
from ..services.email_service import EmailService
from ..services.events import dispatch_event
from ..services.invitations import InvitationService
from ..services.panels import PanelService

router = APIRouter(tags=["invitations"])


class BulkInviteRequest(DelphiBaseModel):
    emails: list[EmailStr] = Field(..., min_length=1, max_length=100)
    message: str | None = Field(default=None, max_length=2000)


class SendEmailResponse(DelphiBaseModel):
    success: bool = True
    invitation_id: str


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_email_service() -> EmailService:
    return EmailService()


def get_invitation_service(
    session: SessionDep,
    email_service: Annotated[EmailService, Depends(get_email_service)],
) -> InvitationService:
    return InvitationService(session, email_service=email_service)


InvitationServiceDep = Annotated[InvitationService, Depends(get_invitation_service)]


# =============================================================================
# PANEL INVITATIONS
# =============================================================================


@router.post(
    "/panels/{panel_id}/invitations",
    response_model=BulkInvitationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite experts by email",
    description="""
    Create one invitation per address and email it when delivery is
    configured. Addresses with a pending invitation are reported under
    ``failed`` instead of raising.
    """,
)
async def invite_experts(
    panel_id: str,
    request: BulkInviteRequest,
    current_user: CurrentUserDep,
    service: InvitationServiceDep,
    session: SessionDep,
):
    result = await service.send_bulk_invitations(
        panel_id,
        [str(e) for e in request.emails],
        invited_by=current_user.id,
        invited_by_name=current_user.name,
        message=request.message,
    )
    await session.commit()
    for event in result.events:
        await dispatch_event(event)

    return BulkInvitationResponse(
        sent=[InvitationResponse.model_validate(i) for i in result.sent],
        failed=[BulkInvitationFailure(**f) for f in result.failed],
    )


@router.get(
    "/panels/{panel_id}/invitations",
    response_model=list[InvitationResponse],
    summary="List a panel's invitations",
)
async def list_invitations(
    panel_id: str,
    current_user: CurrentUserDep,
    service: InvitationServiceDep,
    session: SessionDep,
):
    panel = await PanelService(session).get_panel(panel_id)
    if not panel.is_admin(current_user.id):
        raise Unauthorized("Only panel admins can list invitations")
    return await service.list_for_panel(panel_id)


# =============================================================================
# INVITATION ACTIONS
# =============================================================================


@router.get(
    "/invitations/token/{token}",
    response_model=InvitationPreviewResponse,
    summary="Look up an invitation by its emailed token",
)
async def get_invitation_by_token(token: str, service: InvitationServiceDep):
    return await service.get_by_token(token)


@router.post(
    "/invitations/{invitation_id}/send-email",
    response_model=SendEmailResponse,
    summary="Send the invitation email",
)
async def send_invitation_email(
    invitation_id: str,
    current_user: CurrentUserDep,
    service: InvitationServiceDep,
):
    invitation = await service.send_invitation_email(invitation_id)
    return SendEmailResponse(invitation_id=invitation.id)


@router.post(
    "/invitations/{invitation_id}/accept",
    response_model=InvitationResponse,
    summary="Accept an invitation",
)
async def accept_invitation(
    invitation_id: str,
    current_user: CurrentUserDep,
    service: InvitationServiceDep,
    session: SessionDep,
):
    try:
        return await service.accept(invitation_id, current_user.user)
    except Conflict:
        # Keep the expired mark even though the request fails
        await session.commit()
        raise


@router.post(
    "/invitations/{invitation_id}/decline",
    response_model=InvitationResponse,
    summary="Decline an invitation",
)
async def decline_invitation(
    invitation_id: str,
    current_user: CurrentUserDep,
    service: InvitationServiceDep,
    session: SessionDep,
):
    try:
        return await service.decline(invitation_id, current_user.user)
    except Conflict:
        await session.commit()
        raise


@router.post(
    "/invitations/{invitation_id}/resend",
    response_model=InvitationResponse,
    summary="Reset the expiry and email the invitation again",
)
async def resend_invitation(invitation_id: str, current_user: CurrentUserDep, service: InvitationServiceDep):
    return await service.resend(invitation_id, user_id=current_user.id)


@router.post(
    "/invitations/{invitation_id}/cancel",
    response_model=InvitationResponse,
    summary="Cancel a pending invitation",
)
async def cancel_invitation(invitation_id: str, current_user: CurrentUserDep, service: InvitationServiceDep):
    return await service.cancel(invitation_id, user_id=current_user.id)
