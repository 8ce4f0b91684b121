"""
Customer management endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .auth import CardSystem, employee_name, get_card_system, require
from .schemas import (
    CreateCustomerRequest,
    InitialValuesRequest,
    UpdateCustomerRequest,
    customer_detail,
    customer_summary,
    transaction_response,
)
from ..rbac import Action, User


router = APIRouter()


@router.get("")
async def list_customers(
    q: Optional[str] = None,
    user: User = Depends(require(Action.VIEW_CUSTOMERS)),
    system: CardSystem = Depends(get_card_system)
):
    """List customers, optionally filtered by a search term"""
    customers = system.customer_manager.search_customers(q or "")
    return {"customers": [customer_summary(c) for c in customers]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    request: CreateCustomerRequest,
    user: User = Depends(require(Action.CREATE_CUSTOMER)),
    system: CardSystem = Depends(get_card_system)
):
    """Create a new customer"""
    customer = system.customer_manager.create_customer(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email or "",
        phone=request.phone or "",
        dog_name=request.dog_name or "",
        chip_number=request.chip_number or "",
        created_by=employee_name(user)
    )
    return customer_detail(customer, system.config.badge_display_cap)


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    user: User = Depends(require(Action.VIEW_CUSTOMER)),
    system: CardSystem = Depends(get_card_system)
):
    """Get customer with training progress and badges"""
    customer = system.customer_manager.require_customer(customer_id)
    return customer_detail(customer, system.config.badge_display_cap)


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    user: User = Depends(require(Action.UPDATE_CUSTOMER)),
    system: CardSystem = Depends(get_card_system)
):
    """Update contact and dog fields of a customer"""
    changes = {
        name: value
        for name, value in request.model_dump().items()
        if value is not None
    }
    customer = system.customer_manager.update_customer_profile(
        customer_id, updated_by=user.id, **changes
    )
    return customer_detail(customer, system.config.badge_display_cap)


@router.post("/{customer_id}/initial-values")
async def set_initial_values(
    customer_id: str,
    request: InitialValuesRequest,
    user: User = Depends(require(Action.SET_INITIAL_VALUES)),
    system: CardSystem = Depends(get_card_system)
):
    """Take over an existing customer with a known trail count"""
    customer, transaction = system.transaction_processor.set_initial_values(
        customer_id,
        request.total_trails,
        employee=employee_name(user),
        actor_id=user.id,
        total_seminars=request.total_seminars
    )
    return {
        "customer": customer_detail(customer, system.config.badge_display_cap),
        "transaction": transaction_response(transaction),
    }
