from sqlalchemy import Column, String, Text, Date, DateTime, Float, ForeignKey
from sqlalchemy.sql import func
from hms.database import Base
from hms.models.user import new_id


class Billing(Base):
    __tablename__ = "billing"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id", ondelete="SET NULL"))
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")  # PENDING | PAID | OVERDUE
    issue_date = Column(Date)
    due_date = Column(Date)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
