from sqlalchemy import Column, String, Date, Text, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hms.database import Base
from hms.models.user import new_id


class Patient(Base):
    __tablename__ = "patients"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    date_of_birth = Column(Date)
    gender = Column(String(10))  # MALE | FEMALE | OTHER
    phone = Column(String(20))
    address = Column(Text)
    emergency_contact = Column(JSON)  # {name, relationship, phone}
    medical_history = Column(JSON)    # {allergies: [], conditions: [], medications: []}
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="patient", lazy="selectin")
