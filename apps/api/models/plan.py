"""Plan model: a purchasable credit bundle."""

import uuid

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Plan(Base):
    """Credit plan; a paid activation or a free plan grants ``credits`` to the subscriber."""

    __tablename__ = "plans"
    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_plans_price_non_negative"),
        CheckConstraint("credits >= 0", name="ck_plans_credits_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="", server_default="")
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="BRL", server_default="BRL")
    credits = Column(Integer, nullable=False, default=0)
    features = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subscriptions = relationship("Subscription", back_populates="plan")
