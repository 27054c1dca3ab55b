from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hms.models import Billing
from hms.schemas.billing import BillingStatus, BillingSummary, BillingTotals, StatusTotal


class BillingService:
    def totals(self, records: list[Billing]) -> BillingTotals:
        total = sum(r.amount for r in records)
        paid = sum(r.amount for r in records if r.status == BillingStatus.PAID.value)
        return BillingTotals(
            total_amount=round(total, 2),
            paid_amount=round(paid, 2),
            pending_amount=round(total - paid, 2),
            total_records=len(records),
        )

    async def summary(
        self,
        db: AsyncSession,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> BillingSummary:
        """Amount and count per status, optionally bounded by creation date on either side."""
        query = select(Billing.status, func.coalesce(func.sum(Billing.amount), 0), func.count(Billing.id))
        if start_date:
            query = query.where(Billing.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
        if end_date:
            query = query.where(Billing.created_at <= datetime.combine(end_date, time.max, tzinfo=timezone.utc))
        result = await db.execute(query.group_by(Billing.status))
        by_status = {row[0]: StatusTotal(amount=round(float(row[1]), 2), count=row[2]) for row in result.all()}
        empty = StatusTotal(amount=0, count=0)
        return BillingSummary(
            total_revenue=by_status.get(BillingStatus.PAID.value, empty),
            pending_revenue=by_status.get(BillingStatus.PENDING.value, empty),
            overdue_revenue=by_status.get(BillingStatus.OVERDUE.value, empty),
        )


billing_service = BillingService()
