"""FeatureCost model mapping a feature to its credit price."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from database import Base


class FeatureCost(Base):
    """Credit cost of a platform feature; inactive features are free."""

    __tablename__ = "feature_costs"
    __table_args__ = (
        CheckConstraint("credit_cost >= 0", name="ck_feature_costs_cost_non_negative"),
    )

    feature_id = Column(String, primary_key=True)
    feature_name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="", server_default="")
    credit_cost = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
