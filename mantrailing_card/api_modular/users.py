"""
User administration endpoints (admins only)
"""

from fastapi import APIRouter, Depends, status

from .auth import CardSystem, get_card_system, require
from .schemas import InviteUserRequest, UpdateUserRequest, user_response
from ..errors import ValidationError
from ..rbac import Action, User, UserRole


router = APIRouter()


def _parse_role(value: str) -> UserRole:
    try:
        return UserRole(value)
    except ValueError:
        raise ValidationError(f"Unbekannte Rolle: {value}")


@router.get("")
async def list_users(
    user: User = Depends(require(Action.MANAGE_USERS)),
    system: CardSystem = Depends(get_card_system)
):
    """List all application users"""
    return {"users": [user_response(u) for u in system.user_manager.list_users()]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def invite_user(
    request: InviteUserRequest,
    user: User = Depends(require(Action.MANAGE_USERS)),
    system: CardSystem = Depends(get_card_system)
):
    """Invite an admin or staff member; the temporary password is shown once"""
    invited, temp_password = system.user_manager.invite_user(
        email=request.email,
        role=_parse_role(request.role),
        first_name=request.first_name,
        last_name=request.last_name,
        invited_by=user.id
    )
    return {
        "user": user_response(invited),
        "temporary_password": temp_password,
        "message": f"Benutzer {invited.email} als {invited.role.value} eingeladen.",
    }


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    user: User = Depends(require(Action.MANAGE_USERS)),
    system: CardSystem = Depends(get_card_system)
):
    """Update email, role, name or linked customer of a user"""
    updated = system.user_manager.update_user(
        user_id,
        email=request.email,
        role=_parse_role(request.role) if request.role else None,
        first_name=request.first_name,
        last_name=request.last_name,
        associated_customer_id=request.associated_customer_id,
        updated_by=user.id
    )
    return user_response(updated)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    user: User = Depends(require(Action.MANAGE_USERS)),
    system: CardSystem = Depends(get_card_system)
):
    """Delete a user; admins cannot delete themselves"""
    system.user_manager.delete_user(user_id, deleted_by=user.id)
    return {"message": "Benutzer gelöscht"}
