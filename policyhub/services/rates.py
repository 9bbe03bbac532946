"""
Rate resolver: looks up priced rate rows and turns them into per-person premiums.
"""

from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import or_
from sqlmodel import Session, select

from policyhub.models import Rate, Product, Plan, Liability, PremiumType, RecordStatus


@dataclass(frozen=True)
class RateQuote:
    """Resolved calculated-rate row with its clamped premium."""
    rate_id: int
    liability_id: int
    coverage_amount: str
    base_rate: Decimal
    rate_factor: Decimal
    min_premium: Optional[Decimal]
    max_premium: Optional[Decimal]
    premium: Decimal

    def to_detail(self) -> Dict[str, Any]:
        detail = asdict(self)
        for key in ("base_rate", "rate_factor", "min_premium", "max_premium", "premium"):
            if detail[key] is not None:
                detail[key] = float(detail[key])
        return detail


def to_decimal(value) -> Optional[Decimal]:
    """Convert a stored float to Decimal without binary noise."""
    if value is None:
        return None
    return Decimal(str(value))


def apply_premium_bounds(
    premium: Decimal,
    min_premium: Optional[Decimal],
    max_premium: Optional[Decimal]
) -> Decimal:
    """
    Clamp a premium into [min_premium, max_premium].

    A missing or zero bound is not applied.
    """
    if min_premium and premium < min_premium:
        premium = min_premium
    if max_premium and premium > max_premium:
        premium = max_premium
    return premium


def _calculated_rate_query(
    product_id: int,
    liability_id: int,
    job_class: str,
    coverage_amount: str,
    as_of: date
):
    return (
        select(Rate)
        .where(
            Rate.product_id == product_id,
            Rate.liability_id == liability_id,
            Rate.job_class == str(job_class),
            Rate.coverage_amount == coverage_amount,
            Rate.premium_type == PremiumType.CALCULATED.value,
            Rate.status == RecordStatus.ENABLED.value,
            Rate.effective_date <= as_of,
            or_(Rate.expiry_date.is_(None), Rate.expiry_date >= as_of),
        )
        .order_by(Rate.effective_date.desc(), Rate.rate_id.desc())
        .limit(1)
    )


def lookup_rate(
    session: Session,
    product_id: int,
    liability_id: int,
    job_class: str,
    coverage_amount: str,
    as_of: Optional[date] = None
) -> Optional[Rate]:
    """Return the newest calculated rate row valid on as_of, if any."""
    as_of = as_of or date.today()
    statement = _calculated_rate_query(product_id, liability_id, job_class, coverage_amount, as_of)
    return session.exec(statement).first()


def resolve_rate(
    session: Session,
    product_id: int,
    liability_id: int,
    job_class: str,
    coverage_amount: str,
    as_of: Optional[date] = None
) -> Optional[RateQuote]:
    """
    Resolve a liability rate into a per-person premium.

    Args:
        session: Database session
        product_id: Product ID
        liability_id: Liability ID
        job_class: Occupational risk tier
        coverage_amount: Selected coverage string, e.g. "10万"
        as_of: Date the rate must be valid on (defaults to today)

    Returns:
        RateQuote, or None when no rate row is valid for the key
    """
    rate = lookup_rate(session, product_id, liability_id, job_class, coverage_amount, as_of)
    if rate is None:
        return None

    base_rate = to_decimal(rate.base_rate) or Decimal("0")
    rate_factor = to_decimal(rate.rate_factor)
    if rate_factor is None:
        rate_factor = Decimal("1")
    min_premium = to_decimal(rate.min_premium)
    max_premium = to_decimal(rate.max_premium)

    premium = apply_premium_bounds(base_rate * rate_factor, min_premium, max_premium)

    return RateQuote(
        rate_id=rate.rate_id,
        liability_id=liability_id,
        coverage_amount=coverage_amount,
        base_rate=base_rate,
        rate_factor=rate_factor,
        min_premium=min_premium,
        max_premium=max_premium,
        premium=premium,
    )


def find_fixed_premium(session: Session, product_id: int, plan_id: int) -> Optional[Rate]:
    """Return the enabled fixed-premium row for a plan, if configured."""
    statement = (
        select(Rate)
        .where(
            Rate.product_id == product_id,
            Rate.plan_id == plan_id,
            Rate.premium_type == PremiumType.FIXED.value,
            Rate.status == RecordStatus.ENABLED.value,
        )
        .order_by(Rate.rate_id)
        .limit(1)
    )
    return session.exec(statement).first()


def list_rates(
    session: Session,
    product_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    premium_type: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    List enabled rate rows with product, plan and liability names.

    Products with any fixed-premium plan hide their plan-less calculated rows.
    """
    fixed_products = session.exec(
        select(Rate.product_id)
        .where(
            Rate.premium_type == PremiumType.FIXED.value,
            Rate.status == RecordStatus.ENABLED.value,
            Rate.plan_id.is_not(None),
        )
        .distinct()
    ).all()

    statement = (
        select(Rate, Product.product_name, Plan.plan_name, Liability.liability_name)
        .join(Product, Rate.product_id == Product.product_id, isouter=True)
        .join(Plan, Rate.plan_id == Plan.plan_id, isouter=True)
        .join(Liability, Rate.liability_id == Liability.liability_id, isouter=True)
        .where(Rate.status == RecordStatus.ENABLED.value)
    )

    if fixed_products:
        statement = statement.where(
            ~(
                Rate.product_id.in_(fixed_products)
                & (Rate.premium_type == PremiumType.CALCULATED.value)
                & Rate.plan_id.is_(None)
            )
        )

    if product_id:
        statement = statement.where(Rate.product_id == product_id)
    if plan_id:
        statement = statement.where(Rate.plan_id == plan_id)
    if premium_type:
        statement = statement.where(Rate.premium_type == premium_type)

    statement = statement.order_by(
        Rate.product_id, Rate.plan_id, Rate.liability_id, Rate.job_class, Rate.rate_id
    )

    rows = []
    for rate, product_name, plan_name, liability_name in session.exec(statement).all():
        row = rate.model_dump()
        row["product_name"] = product_name
        row["plan_name"] = plan_name
        row["liability_name"] = liability_name
        rows.append(row)
    return rows
