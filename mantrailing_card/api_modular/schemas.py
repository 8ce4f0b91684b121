"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Dict, List, Optional, Any, Union
from pydantic import BaseModel, Field

from ..customers import Customer
from ..rbac import User
from ..training import is_on_the_way, trail_badges, training_info
from ..transactions import Transaction


# Auth schemas
class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str


# Customer schemas
class CreateCustomerRequest(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    dog_name: Optional[str] = None
    chip_number: Optional[str] = None


class UpdateCustomerRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    dog_name: Optional[str] = None
    chip_number: Optional[str] = None


class InitialValuesRequest(BaseModel):
    total_trails: int = Field(..., description="Absolute number of trails already completed")
    total_seminars: Optional[int] = Field(
        None, description="Absolute number of seminars and events attended; unchanged when omitted"
    )


# Transaction schemas
class TransactionCreateRequest(BaseModel):
    transaction_type: str = Field(..., description="recharge (alias credit) or debit")
    amount: Union[str, Decimal] = Field(..., description="Positive amount, e.g. '18.00' or '18,00'")
    description: Optional[str] = None
    is_session: Optional[bool] = Field(
        None, description="Marks a debit as one training session; inferred when omitted"
    )


class SeminarRequest(BaseModel):
    amount: Union[str, Decimal] = Field(..., description="Individual price of the seminar or event")


# User schemas
class InviteUserRequest(BaseModel):
    email: str
    role: str = Field(..., description="Admin or Mitarbeiter")
    first_name: str = ""
    last_name: str = ""


class UpdateUserRequest(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = Field(None, description="Admin, Mitarbeiter or Kunde")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    associated_customer_id: Optional[str] = None


# Response helpers; amounts are rendered as decimal strings
def customer_summary(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "dog_name": customer.dog_name,
        "avatar_initials": customer.avatar_initials,
        "balance": str(customer.balance),
        "level": customer.level.value,
        "created_at": customer.created_at.isoformat(),
    }


def customer_detail(customer: Customer, badge_display_cap: Optional[int] = None) -> Dict[str, Any]:
    total = customer.total_trails
    info = training_info(total)
    result = customer_summary(customer)
    result.update({
        "phone": customer.phone,
        "chip_number": customer.chip_number,
        "total_transactions": customer.total_transactions,
        "total_seminars": customer.total_seminars,
        "created_by": customer.created_by,
        "training_progress": [section.to_dict() for section in customer.training_progress],
        "total_trails": total,
        "level_display": info.level_display,
        "badges": [
            {"size": badge.size, "count": badge.count}
            for badge in trail_badges(total, badge_display_cap)
        ],
        "on_the_way": is_on_the_way(total),
    })
    return result


def transaction_response(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "customer_id": transaction.customer_id,
        "transaction_type": transaction.transaction_type.value,
        "description": transaction.description,
        "amount": str(transaction.amount),
        "old_balance": str(transaction.old_balance),
        "new_balance": str(transaction.new_balance),
        "employee": transaction.employee,
        "is_session": transaction.is_session,
        "created_at": transaction.created_at.isoformat(),
    }


def user_response(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role.value,
        "associated_customer_id": user.associated_customer_id,
        "is_active": user.is_active,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat(),
    }


def stringify_amounts(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: str(v) if isinstance(v, Decimal) else v for k, v in row.items()}


def transaction_list(transactions: List[Transaction]) -> List[Dict[str, Any]]:
    return [transaction_response(t) for t in transactions]
