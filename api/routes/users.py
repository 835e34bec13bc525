"""
api/routes/users.py -- Profile routes for the authenticated principal.

Routes:
  GET   /users/profile  -- full profile of the caller
  PATCH /users/profile  -- change display name and/or email

There is no way to address another principal's profile: both routes act on
the principal resolved by the request gate.
"""

from fastapi import APIRouter, Depends, Request

from api.models import ProfileResponse, ProfileUpdate
from auth.gate import get_current_principal
from auth.models import Principal
from auth.store import PrincipalStore
from core.errors import NotFoundError

router = APIRouter()


@router.get("/users/profile", response_model=ProfileResponse)
def get_profile(principal: Principal = Depends(get_current_principal)) -> ProfileResponse:
    return ProfileResponse.from_principal(principal)


@router.patch("/users/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> ProfileResponse:
    """Update name and/or email. Omitted or null fields are left unchanged.

    A later Google login overwrites both again with the provider's values.
    """
    store: PrincipalStore = request.app.state.principal_store
    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if fields:
        store.update_profile(principal.id, **fields)
    updated = store.get_by_id(principal.id)
    if updated is None:
        # Deleted between the gate and here.
        raise NotFoundError("User not found")
    return ProfileResponse.from_principal(updated)
