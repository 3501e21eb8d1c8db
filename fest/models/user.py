# fest/models/user.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from fest.database import Base
from fest.models.enums import PaymentStatus, Role, enum_column_type


class Institution(Base):
    __tablename__ = "institutions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), unique=True, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(120), nullable=False, default="")
    role = Column(enum_column_type(Role), nullable=False, default=Role.PARTICIPANT)
    payment_status = Column(
        enum_column_type(PaymentStatus), nullable=False, default=PaymentStatus.UNPAID
    )
    profile_completed = Column(Boolean, nullable=False, default=False)
    institution_id = Column(Integer, ForeignKey("institutions.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())

    institution = relationship("Institution", lazy="joined")

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
