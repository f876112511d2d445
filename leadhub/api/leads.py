"""Lead and interaction API endpoints.

Every mutation goes through CRMService, which emits the matching webhook
event once the write succeeds.
"""

from fastapi import APIRouter, Depends, Query

from leadhub.api.deps import crm_service, current_actor
from leadhub.auth import Actor
from leadhub.crm.service import CRMService
from leadhub.storage.models import (
    Interaction,
    InteractionCreate,
    InteractionUpdate,
    Lead,
    LeadCreate,
    LeadFilters,
    LeadPriority,
    LeadStatus,
    LeadUpdate,
)

router = APIRouter(prefix="/api", tags=["Leads"])


# ============================================================================
# Leads
# ============================================================================


@router.get("/leads", response_model=list[Lead])
async def list_leads(
    status: LeadStatus | None = None,
    assigned_to: int | None = None,
    source: str | None = None,
    priority: LeadPriority | None = None,
    search: str | None = None,
    limit: int | None = Query(default=None, ge=1, le=500),
    actor: Actor = Depends(current_actor),  # noqa: ARG001
    service: CRMService = Depends(crm_service),
) -> list[Lead]:
    """List leads, newest first, with optional filters."""
    filters = LeadFilters(
        status=status,
        assigned_to=assigned_to,
        source=source,
        priority=priority,
        search=search,
    )
    return await service.list_leads(filters, limit=limit)


@router.post("/leads", response_model=Lead, status_code=201)
async def create_lead(
    request: LeadCreate,
    actor: Actor = Depends(current_actor),
    service: CRMService = Depends(crm_service),
) -> Lead:
    """Create a lead (emits ``lead.created``)."""
    return await service.create_lead(request, actor)


@router.get(
    "/leads/{lead_id}",
    response_model=Lead,
    responses={404: {"description": "Lead not found"}},
)
async def get_lead(
    lead_id: int,
    actor: Actor = Depends(current_actor),  # noqa: ARG001
    service: CRMService = Depends(crm_service),
) -> Lead:
    return await service.get_lead(lead_id)


@router.put(
    "/leads/{lead_id}",
    response_model=Lead,
    responses={404: {"description": "Lead not found"}},
)
async def update_lead(
    lead_id: int,
    request: LeadUpdate,
    actor: Actor = Depends(current_actor),
    service: CRMService = Depends(crm_service),
) -> Lead:
    """Update a lead.

    Emits ``lead.assigned`` when the assignee or engineer changes,
    ``lead.updated`` otherwise.
    """
    return await service.update_lead(lead_id, request, actor)


@router.delete(
    "/leads/{lead_id}",
    status_code=204,
    responses={404: {"description": "Lead not found"}},
)
async def delete_lead(
    lead_id: int,
    actor: Actor = Depends(current_actor),
    service: CRMService = Depends(crm_service),
) -> None:
    """Delete a lead and its interactions (emits ``lead.deleted``)."""
    await service.delete_lead(lead_id, actor)


# ============================================================================
# Interactions
# ============================================================================


@router.get(
    "/leads/{lead_id}/interactions",
    response_model=list[Interaction],
    responses={404: {"description": "Lead not found"}},
)
async def list_interactions(
    lead_id: int,
    actor: Actor = Depends(current_actor),  # noqa: ARG001
    service: CRMService = Depends(crm_service),
) -> list[Interaction]:
    return await service.list_interactions(lead_id)


@router.post(
    "/leads/{lead_id}/interactions",
    response_model=Interaction,
    status_code=201,
    responses={404: {"description": "Lead not found"}},
)
async def add_interaction(
    lead_id: int,
    request: InteractionCreate,
    actor: Actor = Depends(current_actor),
    service: CRMService = Depends(crm_service),
) -> Interaction:
    """Log an interaction (emits ``interaction.created``)."""
    return await service.add_interaction(lead_id, request, actor)


@router.put(
    "/interactions/{interaction_id}",
    response_model=Interaction,
    responses={404: {"description": "Interaction not found"}},
)
async def update_interaction(
    interaction_id: int,
    request: InteractionUpdate,
    actor: Actor = Depends(current_actor),
    service: CRMService = Depends(crm_service),
) -> Interaction:
    return await service.update_interaction(interaction_id, request, actor)


@router.delete(
    "/interactions/{interaction_id}",
    status_code=204,
    responses={404: {"description": "Interaction not found"}},
)
async def delete_interaction(
    interaction_id: int,
    actor: Actor = Depends(current_actor),
    service: CRMService = Depends(crm_service),
) -> None:
    await service.delete_interaction(interaction_id, actor)
