from decimal import Decimal

from sqlalchemy.orm import Session

from stockdesk import ledger
from stockdesk.models import utcnow


def portfolio_summary(db: Session, account_id: int) -> dict:
    """Value every position at the current quote and total them up."""
    ledger.get_account(db, account_id)
    rows = ledger.list_positions(db, account_id)

    total_investment = sum((Decimal(p.total_investment) for p in rows), Decimal(0))
    total_value = sum((p.current_value for p in rows), Decimal(0))
    total_pl = total_value - total_investment
    total_pl_pct = total_pl / total_investment * 100 if total_investment > 0 else Decimal(0)

    return {
        "portfolio": [p.to_dict() for p in rows],
        "summary": {
            "totalInvestment": float(total_investment),
            "totalCurrentValue": float(total_value),
            "totalProfitLoss": float(total_pl),
            "totalProfitLossPercent": float(total_pl_pct),
        },
    }


def portfolio_performance(db: Session, account_id: int) -> dict:
    ledger.get_account(db, account_id)
    value = sum((p.current_value for p in ledger.list_positions(db, account_id)), Decimal(0))
    return {"currentValue": float(value), "timestamp": utcnow().isoformat()}
