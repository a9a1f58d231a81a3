"""
Module: ledger_kernel.models.plan
Responsibility: ORM persistence for investment plans (the fixed-term products
    users invest into).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced (by PlanService before flush, mirrored by CHECK
constraints where the database can express them):
    - max_amount >= min_amount when both set.
    - 0 <= rate <= 100.
    - duration_days >= 1.
    - min_amount > 0.
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class PlanStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class PlanVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    ARCHIVED = "archived"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class InvestmentPlan(TrackedBase):
    """A fixed-term investment product paying ``rate`` percent over the term."""

    __tablename__ = "investment_plans"

    __table_args__ = (
        CheckConstraint("rate >= 0 AND rate <= 100", name="ck_plan_rate_range"),
        CheckConstraint("duration_days >= 1", name="ck_plan_duration_positive"),
        CheckConstraint("min_amount > 0", name="ck_plan_min_amount_positive"),
        CheckConstraint(
            "max_amount IS NULL OR max_amount >= min_amount",
            name="ck_plan_max_ge_min",
        ),
        Index("idx_plan_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Percent return over the whole term, not annualised
    rate: Mapped[Decimal] = mapped_column(nullable=False)

    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)

    min_amount: Mapped[Decimal] = mapped_column(nullable=False)

    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PlanStatus.ACTIVE.value
    )

    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PlanVisibility.PUBLIC.value
    )

    # Cap on distinct users holding an active position in this plan
    max_active_users: Mapped[int | None] = mapped_column(Integer, nullable=True)

    allow_multiple_investments: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    risk_level: Mapped[str] = mapped_column(
        String(10), nullable=False, default=RiskLevel.MEDIUM.value
    )

    total_invested: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    active_investments: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<InvestmentPlan {self.name} rate={self.rate} days={self.duration_days}>"
