"""
Login and self-registration endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .auth import CardSystem, get_card_system, get_current_user, logger
from .schemas import LoginRequest, RegisterRequest, user_response
from ..errors import AuthorizationError
from ..logging_config import log_action
from ..rbac import User


router = APIRouter()


@router.post("/login")
async def login(
    request: LoginRequest,
    system: CardSystem = Depends(get_card_system)
):
    """Authenticate user and return JWT token"""
    try:
        user = system.user_manager.authenticate(request.email, request.password)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    log_action(
        logger, "info", "User authenticated successfully",
        user_id=user.id, action="login", resource="auth"
    )
    return {
        "access_token": system.create_access_token(user),
        "token_type": "bearer",
        "user": user_response(user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: CardSystem = Depends(get_card_system)
):
    """Self-registration of a customer; returns a token for the new login"""
    if not system.config.allow_self_registration:
        raise HTTPException(status_code=403, detail="Registrierung ist deaktiviert")

    customer, user = system.customer_manager.register_customer(request.email, request.password)
    return {
        "access_token": system.create_access_token(user),
        "token_type": "bearer",
        "customer_id": customer.id,
        "user": user_response(user),
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    """The logged in user"""
    return user_response(user)
