from datetime import datetime, time, timedelta, timezone

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hms.models import Appointment, Billing, Doctor, Patient


class DashboardService:
    async def stats(self, db: AsyncSession) -> dict:
        now = datetime.now(timezone.utc)
        day_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)
        month_start = day_start.replace(day=1)

        total_patients = await db.scalar(select(func.count(Patient.id))) or 0
        total_doctors = await db.scalar(select(func.count(Doctor.id))) or 0
        todays_appointments = await db.scalar(
            select(func.count(Appointment.id)).where(
                Appointment.appointment_date >= day_start,
                Appointment.appointment_date < day_end,
                Appointment.status != "CANCELLED",
            )
        ) or 0
        pending_bills = await db.scalar(
            select(func.count(Billing.id)).where(Billing.status == "PENDING")
        ) or 0
        overdue_bills = await db.scalar(
            select(func.count(Billing.id)).where(Billing.status == "OVERDUE")
        ) or 0
        monthly_revenue = await db.scalar(
            select(func.coalesce(func.sum(Billing.amount), 0)).where(
                Billing.status == "PAID",
                Billing.created_at >= month_start,
            )
        ) or 0

        return {
            "totalPatients": total_patients,
            "totalDoctors": total_doctors,
            "todaysAppointments": todays_appointments,
            "pendingBills": pending_bills,
            "overdueBills": overdue_bills,
            "monthlyRevenue": round(float(monthly_revenue), 2),
        }


dashboard_service = DashboardService()
