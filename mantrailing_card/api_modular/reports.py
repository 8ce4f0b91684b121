"""
Dashboard, report and leaderboard endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from .auth import CardSystem, get_card_system, require
from .schemas import customer_summary, stringify_amounts, transaction_list
from ..rbac import Action, User
from ..reporting import ALL_EMPLOYEES, ReportFormat, ReportType, TransactionFilter


router = APIRouter()


@router.get("/dashboard")
async def dashboard(
    user: User = Depends(require(Action.VIEW_DASHBOARD)),
    system: CardSystem = Depends(get_card_system)
):
    """Key figures for the staff dashboard"""
    stats = system.reporting_engine.dashboard_stats()
    return {
        "total_customers": stats["total_customers"],
        "total_balance": str(stats["total_balance"]),
        "transactions_today": stats["transactions_today"],
        "transactions_this_month": stats["transactions_this_month"],
        "newest_customers": [customer_summary(c) for c in stats["newest_customers"]],
        "latest_transactions": transaction_list(stats["latest_transactions"]),
        "generated_at": stats["generated_at"].isoformat(),
    }


@router.get("/periods")
async def report_periods(
    report_type: str = ReportType.MONTHLY.value,
    user: User = Depends(require(Action.VIEW_REPORTS)),
    system: CardSystem = Depends(get_card_system)
):
    """Selectable periods and employees for the transaction report"""
    return {
        "report_type": report_type,
        "periods": system.reporting_engine.report_periods(report_type),
        "employees": system.reporting_engine.employee_options(),
        "type_filters": [f.value for f in TransactionFilter],
    }


@router.get("/transactions")
async def transaction_report(
    report_type: str = ReportType.MONTHLY.value,
    period: Optional[str] = None,
    employee: str = ALL_EMPLOYEES,
    type_filter: str = TransactionFilter.ALL.value,
    format: str = ReportFormat.DICT.value,
    user: User = Depends(require(Action.VIEW_REPORTS)),
    system: CardSystem = Depends(get_card_system)
):
    """Bookings of a period filtered by employee and type"""
    engine = system.reporting_engine
    result = engine.transaction_report(report_type, period, employee, type_filter)
    result.data = [stringify_amounts(row) for row in result.data]
    result.totals = stringify_amounts(result.totals)

    if format == ReportFormat.CSV.value:
        return PlainTextResponse(engine.export_report(result, ReportFormat.CSV), media_type="text/csv")
    return engine.export_report(result, ReportFormat.DICT)


@router.get("/leaderboard")
async def leaderboard(
    user: User = Depends(require(Action.VIEW_LEADERBOARD)),
    system: CardSystem = Depends(get_card_system)
):
    """Customers ranked by completed trails"""
    return {"leaderboard": system.reporting_engine.leaderboard()}
