"""Schemas for panels, experts and invitations."""

from datetime import datetime

from ..models import ExpertStatus, InvitationStatus, PanelStatus
from .base import DelphiBaseModel


class PanelResponse(DelphiBaseModel):
    id: str
    name: str
    description: str
    creator_id: str
    admin_ids: list[str]
    expert_ids: list[str]
    status: PanelStatus
    created_at: datetime
    updated_at: datetime


class ExpertResponse(DelphiBaseModel):
    id: str
    panel_id: str
    email: str
    name: str
    organization: str | None = None
    expertise: str | None = None
    status: ExpertStatus
    invited_at: datetime
    accepted_at: datetime | None = None
    user_id: str | None = None


class InvitationResponse(DelphiBaseModel):
    id: str
    panel_id: str
    panel_name: str
    email: str
    status: InvitationStatus
    invited_by_name: str | None = None
    message: str | None = None
    expires_at: datetime
    accepted_at: datetime | None = None
    declined_at: datetime | None = None
    created_at: datetime


class InvitationPreviewResponse(DelphiBaseModel):
    """Public view of an invitation, looked up by its token."""

    id: str
    panel_name: str
    email: str
    status: InvitationStatus
    invited_by_name: str | None = None
    message: str | None = None
    expires_at: datetime


class BulkInvitationFailure(DelphiBaseModel):
    email: str
    reason: str


class BulkInvitationResponse(DelphiBaseModel):
    sent: list[InvitationResponse]
    failed: list[BulkInvitationFailure]
