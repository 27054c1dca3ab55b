from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.sql import func
from hms.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    # No foreign keys: entries outlive the users and records they mention.
    user_id = Column(String(36), index=True)  # None for anonymous callers
    user_role = Column(String(20))
    action = Column(String(30), nullable=False, index=True)
    resource = Column(String(30), nullable=False)
    resource_id = Column(String(36))
    patient_id = Column(String(36), index=True)

    outcome = Column(String(10), nullable=False)  # SUCCESS | FAILURE
    risk_level = Column(String(10), nullable=False)  # LOW | MEDIUM | HIGH
    reason = Column(Text)
    details = Column(JSON, default=dict)

    ip_address = Column(String(64))
    user_agent = Column(String(255))

    # sha256 over the previous entry's hash and this entry's fields
    hash_chain = Column(String(64), nullable=False)
