"""
PlanService -- create and update investment plans.

Every write re-validates the full set of plan invariants on the merged
values, so an update can never leave a plan with max_amount < min_amount or
a rate outside [0, 100].
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import PlanNotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.plan import (
    InvestmentPlan,
    PlanStatus,
    PlanVisibility,
    RiskLevel,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.plan")

_UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "category",
    "rate",
    "duration_days",
    "min_amount",
    "max_amount",
    "status",
    "visibility",
    "max_active_users",
    "allow_multiple_investments",
    "risk_level",
})

_DECIMAL_FIELDS = frozenset({"rate", "min_amount", "max_amount"})


class PlanService(BaseService[InvestmentPlan]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def create_plan(
        self,
        name: str,
        rate: Decimal,
        duration_days: int,
        min_amount: Decimal,
        max_amount: Decimal | None = None,
        *,
        description: str | None = None,
        category: str | None = None,
        status: PlanStatus | str = PlanStatus.ACTIVE,
        visibility: PlanVisibility | str = PlanVisibility.PUBLIC,
        max_active_users: int | None = None,
        allow_multiple_investments: bool = False,
        risk_level: RiskLevel | str = RiskLevel.MEDIUM,
        actor_id: UUID | None = None,
    ) -> InvestmentPlan:
        values = {
            "name": name,
            "description": description,
            "category": category,
            "rate": to_decimal(rate),
            "duration_days": duration_days,
            "min_amount": to_decimal(min_amount),
            "max_amount": to_decimal(max_amount) if max_amount is not None else None,
            "status": status,
            "visibility": visibility,
            "max_active_users": max_active_users,
            "allow_multiple_investments": allow_multiple_investments,
            "risk_level": risk_level,
        }
        values = self._validate(values)

        plan = InvestmentPlan(
            **values,
            total_invested=Decimal("0"),
            active_investments=0,
            created_by_id=actor_id,
        )
        self.session.add(plan)
        self.session.flush()
        logger.info(
            "plan_created",
            extra={"plan_id": str(plan.id), "plan_name": name, "rate": str(plan.rate)},
        )
        return plan

    def update_plan(
        self, plan_id: UUID, actor_id: UUID | None = None, **changes
    ) -> InvestmentPlan:
        plan = self.get_plan(plan_id)

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "plan", f"unknown fields: {', '.join(sorted(unknown))}"
            )

        merged = {field: getattr(plan, field) for field in _UPDATABLE_FIELDS}
        for field, value in changes.items():
            if field in _DECIMAL_FIELDS and value is not None:
                value = to_decimal(value)
            merged[field] = value
        merged = self._validate(merged)

        for field in changes:
            setattr(plan, field, merged[field])
        plan.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "plan_updated",
            extra={"plan_id": str(plan.id), "fields": sorted(changes)},
        )
        return plan

    def get_plan(self, plan_id: UUID) -> InvestmentPlan:
        plan = self.session.get(InvestmentPlan, plan_id)
        if plan is None:
            raise PlanNotFoundError(str(plan_id))
        return plan

    @staticmethod
    def _validate(values: dict) -> dict:
        if not values["name"]:
            raise ValidationError("name", "must not be empty")
        rate = values["rate"]
        if rate < 0 or rate > 100:
            raise ValidationError("rate", f"must be within [0, 100], got {rate}")
        if values["duration_days"] < 1:
            raise ValidationError(
                "duration_days", f"must be >= 1, got {values['duration_days']}"
            )
        if values["min_amount"] <= 0:
            raise ValidationError(
                "min_amount", f"must be positive, got {values['min_amount']}"
            )
        max_amount = values["max_amount"]
        if max_amount is not None and max_amount < values["min_amount"]:
            raise ValidationError(
                "max_amount",
                f"{max_amount} is below min_amount {values['min_amount']}",
            )
        max_users = values["max_active_users"]
        if max_users is not None and max_users < 1:
            raise ValidationError("max_active_users", f"must be >= 1, got {max_users}")

        try:
            values["status"] = PlanStatus(values["status"]).value
            values["visibility"] = PlanVisibility(values["visibility"]).value
            values["risk_level"] = RiskLevel(values["risk_level"]).value
        except ValueError as exc:
            raise ValidationError("plan", str(exc)) from exc
        return values
