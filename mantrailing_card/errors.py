"""
Error types shared by the ledger, the customer and user managers and the API.

All of them are local and non-retryable; the message is shown to the user
as-is so the input can be corrected.
"""


class CardError(ValueError):
    """Base class for all card service errors"""


class ValidationError(CardError):
    """Malformed or missing required input"""


class InsufficientBalanceError(CardError):
    """A debit exceeds the customer's balance"""

    def __init__(self, message: str, balance=None, amount=None):
        super().__init__(message)
        self.balance = balance
        self.amount = amount


class NotFoundError(CardError):
    """Referenced customer, transaction or user does not exist"""


class AuthorizationError(CardError):
    """The acting user is not allowed to perform the action"""
