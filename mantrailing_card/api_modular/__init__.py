"""
Mantrailing Card API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import CardSystem
from .customers import router as customers_router
from .login import router as login_router
from .reports import router as reports_router
from .transactions import customer_router as customer_transactions_router
from .transactions import router as transactions_router
from .users import router as users_router
from ..config import get_config
from ..errors import (
    AuthorizationError, CardError, InsufficientBalanceError, NotFoundError, ValidationError,
)
from .. import __version__


ERROR_STATUS = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    InsufficientBalanceError: 409,
}


async def card_error_handler(request: Request, exc: CardError) -> JSONResponse:
    """Map service errors to HTTP status codes; the message is shown verbatim"""
    status_code = 400
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__}
    )


def create_app(system: Optional[CardSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application

    Args:
        system: Pre-built card system (tests pass one with in-memory storage);
            built from configuration on first request when omitted
    """
    app = FastAPI(
        title="Mantrailing Card API",
        description="Prepaid card, booking and training progression service for a dog-training school",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.card_system = system

    origins = [o.strip() for o in get_config().cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CardError, card_error_handler)

    # Include routers
    app.include_router(login_router, prefix="/auth", tags=["Auth"])
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(customer_transactions_router, prefix="/customers", tags=["Transactions"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])
    app.include_router(users_router, prefix="/users", tags=["Users"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "mantrailing_card_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Mantrailing Card API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth",
                "customers": "/customers",
                "transactions": "/transactions",
                "reports": "/reports",
                "users": "/users",
            }
        }

    return app


# Application instance for uvicorn; the card system is built lazily
app = create_app()
