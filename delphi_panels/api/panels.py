"""Panel API Routes: panels, membership and expert records."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field

from ..core import CurrentUserDep, SessionDep, Unauthorized
from ..models import ExpertStatus
from ..schemas import ExpertResponse, PanelResponse
from ..schemas.base import DelphiBaseModel
from ..services.panels import CreatePanelInput, PanelService, UpdatePanelInput

router = APIRouter(prefix="/panels", tags=["panels"])


class CreatePanelRequest(DelphiBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    expert_ids: list[str] = Field(default_factory=list)


class UpdatePanelRequest(DelphiBaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None


def get_panel_service(session: SessionDep) -> PanelService:
    return PanelService(session)


PanelServiceDep = Annotated[PanelService, Depends(get_panel_service)]


@router.post(
    "",
    response_model=PanelResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a panel",
    description="The caller becomes the panel's first admin.",
)
async def create_panel(request: CreatePanelRequest, current_user: CurrentUserDep, service: PanelServiceDep):
    return await service.create_panel(
        CreatePanelInput(
            name=request.name,
            description=request.description,
            expert_ids=request.expert_ids,
        ),
        creator_id=current_user.id,
    )


@router.get("", response_model=list[PanelResponse], summary="List my panels")
async def list_panels(
    current_user: CurrentUserDep,
    service: PanelServiceDep,
    include_archived: Annotated[bool, Query(alias="includeArchived")] = False,
):
    return await service.list_panels_for_user(current_user.id, include_archived=include_archived)


@router.get("/{panel_id}", response_model=PanelResponse, summary="Get a panel")
async def get_panel(panel_id: str, current_user: CurrentUserDep, service: PanelServiceDep):
    panel = await service.get_panel(panel_id)
    if not panel.is_member(current_user.id):
        raise Unauthorized("Not a member of this panel")
    return panel


@router.patch("/{panel_id}", response_model=PanelResponse, summary="Update a panel")
async def update_panel(
    panel_id: str,
    request: UpdatePanelRequest,
    current_user: CurrentUserDep,
    service: PanelServiceDep,
):
    return await service.update_panel(
        panel_id,
        UpdatePanelInput(**request.model_dump(exclude_unset=True)),
        user_id=current_user.id,
    )


@router.post("/{panel_id}/archive", response_model=PanelResponse, summary="Archive a panel")
async def archive_panel(panel_id: str, current_user: CurrentUserDep, service: PanelServiceDep):
    return await service.archive_panel(panel_id, user_id=current_user.id)


# =============================================================================
# MEMBERSHIP
# =============================================================================


@router.post("/{panel_id}/experts/{uid}", response_model=PanelResponse, summary="Add an expert")
async def add_expert(panel_id: str, uid: str, current_user: CurrentUserDep, service: PanelServiceDep):
    return await service.add_expert(panel_id, uid, user_id=current_user.id)


@router.delete("/{panel_id}/experts/{uid}", response_model=PanelResponse, summary="Remove an expert")
async def remove_expert(panel_id: str, uid: str, current_user: CurrentUserDep, service: PanelServiceDep):
    return await service.remove_expert(panel_id, uid, user_id=current_user.id)


@router.post("/{panel_id}/admins/{uid}", response_model=PanelResponse, summary="Add an admin")
async def add_admin(panel_id: str, uid: str, current_user: CurrentUserDep, service: PanelServiceDep):
    return await service.add_admin(panel_id, uid, user_id=current_user.id)


@router.delete(
    "/{panel_id}/admins/{uid}",
    response_model=PanelResponse,
    summary="Remove an admin",
    description="The last admin of a panel cannot be removed (409).",
)
async def remove_admin(panel_id: str, uid: str, current_user: CurrentUserDep, service: PanelServiceDep):
    return await service.remove_admin(panel_id, uid, user_id=current_user.id)


@router.get("/{panel_id}/experts", response_model=list[ExpertResponse], summary="List expert records")
async def list_experts(
    panel_id: str,
    current_user: CurrentUserDep,
    service: PanelServiceDep,
    expert_status: Annotated[ExpertStatus | None, Query(alias="status")] = None,
):
    panel = await service.get_panel(panel_id)
    if not panel.is_admin(current_user.id):
        raise Unauthorized("Only panel admins can list experts")
    return await service.list_experts(panel_id, status=expert_status)
