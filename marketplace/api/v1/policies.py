# ============================================================================
# marketplace/api/v1/policies.py
# Booking policy management - thin HTTP layer
# ============================================================================
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status

from marketplace.api.dependencies import get_current_user_id, get_policy_service
from marketplace.schemas.booking_policy import PolicyCreate, PolicyResponse, PolicyUpdate
from marketplace.services.policy.policy_service import PolicyService

router = APIRouter(prefix="/policies", tags=["policies"])


@router.get("/templates")
def policy_templates():
    """Ready-made policies a provider can start from."""
    return PolicyService.policy_templates()


@router.post("", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
def create_policy(
        payload: PolicyCreate,
        current_user_id: UUID = Depends(get_current_user_id),
        service: PolicyService = Depends(get_policy_service)
):
    return service.create_policy(current_user_id, payload.model_dump())


@router.get("", response_model=List[PolicyResponse])
def list_policies(
        service_id: UUID = Query(..., description="Service whose policies to list"),
        include_inactive: bool = Query(False),
        service: PolicyService = Depends(get_policy_service)
):
    return service.list_policies(service_id, include_inactive=include_inactive)


@router.patch("/{policy_id}", response_model=PolicyResponse)
def update_policy(
        payload: PolicyUpdate,
        policy_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: PolicyService = Depends(get_policy_service)
):
    return service.update_policy(policy_id, current_user_id, payload.model_dump(exclude_unset=True))


@router.delete("/{policy_id}", response_model=PolicyResponse)
def deactivate_policy(
        policy_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: PolicyService = Depends(get_policy_service)
):
    return service.deactivate_policy(policy_id, current_user_id)
