"""
Booking endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .auth import CardSystem, employee_name, get_card_system, get_current_user, require
from .schemas import (
    SeminarRequest,
    TransactionCreateRequest,
    customer_detail,
    transaction_list,
    transaction_response,
)
from ..rbac import Action, User
from ..transactions import TransactionRequest


# Mounted below /customers
customer_router = APIRouter()

# Mounted at /transactions
router = APIRouter()


@customer_router.get("/{customer_id}/transactions")
async def get_customer_transactions(
    customer_id: str,
    user: User = Depends(require(Action.VIEW_TRANSACTIONS)),
    system: CardSystem = Depends(get_card_system)
):
    """Booking history of a customer, newest first"""
    transactions = system.transaction_processor.get_customer_transactions(customer_id)
    return {"transactions": transaction_list(transactions)}


@customer_router.post("/{customer_id}/transactions", status_code=status.HTTP_201_CREATED)
async def book_transaction(
    customer_id: str,
    request: TransactionCreateRequest,
    user: User = Depends(require(Action.BOOK_TRANSACTION)),
    system: CardSystem = Depends(get_card_system)
):
    """Book a recharge or debit"""
    customer, transaction = system.transaction_processor.book_transaction(
        customer_id,
        TransactionRequest(
            transaction_type=request.transaction_type,
            amount=request.amount,
            description=request.description or "",
            is_session=request.is_session
        ),
        employee=employee_name(user),
        actor_id=user.id
    )
    return {
        "customer": customer_detail(customer, system.config.badge_display_cap),
        "transaction": transaction_response(transaction),
    }


@customer_router.post("/{customer_id}/sessions", status_code=status.HTTP_201_CREATED)
async def book_session(
    customer_id: str,
    user: User = Depends(require(Action.BOOK_TRANSACTION)),
    system: CardSystem = Depends(get_card_system)
):
    """Charge one training session at the configured price"""
    customer, transaction = system.transaction_processor.book_session(
        customer_id, employee=employee_name(user), actor_id=user.id
    )
    return {
        "customer": customer_detail(customer, system.config.badge_display_cap),
        "transaction": transaction_response(transaction),
    }


@customer_router.post("/{customer_id}/seminars", status_code=status.HTTP_201_CREATED)
async def book_seminar(
    customer_id: str,
    request: SeminarRequest,
    user: User = Depends(require(Action.BOOK_TRANSACTION)),
    system: CardSystem = Depends(get_card_system)
):
    """Charge a seminar or event at an individual price"""
    customer, transaction = system.transaction_processor.book_seminar(
        customer_id, request.amount, employee=employee_name(user), actor_id=user.id
    )
    return {
        "customer": customer_detail(customer, system.config.badge_display_cap),
        "transaction": transaction_response(transaction),
    }


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    system: CardSystem = Depends(get_card_system)
):
    """Get a single booking"""
    transaction = system.transaction_processor.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    system.policy.enforce(user, Action.VIEW_TRANSACTIONS, transaction.customer_id)
    return transaction_response(transaction)
