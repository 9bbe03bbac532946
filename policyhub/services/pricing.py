"""
Premium aggregator: fixed plan premiums or the sum of liability rates.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Any, List, Optional
import logging
import re

from sqlmodel import Session

from policyhub.cache import config_cache
from policyhub.models import PremiumType
from policyhub.services.rates import resolve_rate, find_fixed_premium, to_decimal

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*(年|个月)\s*$")


class PremiumInputError(ValueError):
    """Raised when a premium request lacks the inputs its pricing path needs."""


class DurationUnit(str, Enum):
    MONTHS = "months"
    YEARS = "years"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Duration:
    """Coverage period parsed from portal strings such as "1年" or "6个月"."""
    unit: DurationUnit
    count: int = 0
    raw: str = ""

    @classmethod
    def parse(cls, value: Optional[str]) -> "Duration":
        raw = str(value or "").strip()
        match = _DURATION_PATTERN.match(raw)
        if match:
            unit = DurationUnit.YEARS if match.group(2) == "年" else DurationUnit.MONTHS
            return cls(unit=unit, count=int(match.group(1)), raw=raw)
        # Non-numeric forms such as "三个月" or "半年"
        if "个月" in raw:
            return cls(unit=DurationUnit.MONTHS, count=0, raw=raw)
        if "年" in raw:
            return cls(unit=DurationUnit.YEARS, count=0, raw=raw)
        return cls(unit=DurationUnit.UNKNOWN, raw=raw)

    @property
    def is_monthly(self) -> bool:
        """Month counts other than 12 bill the monthly premium."""
        return self.unit == DurationUnit.MONTHS and self.raw != "12个月" and self.count != 12

    @property
    def is_annual(self) -> bool:
        return not self.is_monthly


@dataclass
class PremiumResult:
    premium_per_person: Decimal
    total_premium: Decimal
    insured_count: int
    premium_type: str
    details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "premium_per_person": float(self.premium_per_person),
            "total_premium": float(self.total_premium),
            "insured_count": self.insured_count,
            "premium_type": self.premium_type,
            "premium_details": self.details,
        }


def round_money(amount: Decimal, places: Optional[int] = None) -> Decimal:
    """Round half-up at the cent."""
    if places is None:
        places = config_cache.get_decimal_places()
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def calculate_fixed_premium(
    monthly_premium: Optional[Decimal],
    annual_premium: Optional[Decimal],
    duration: Duration,
    insured_count: int
) -> PremiumResult:
    """
    Price a plan with a flat premium.

    Formula: total = round(monthly or annual premium) * insured_count
    """
    chosen = monthly_premium if duration.is_monthly else annual_premium
    per_person = round_money(chosen or Decimal("0"))
    total = round_money(per_person * insured_count)

    return PremiumResult(
        premium_per_person=per_person,
        total_premium=total,
        insured_count=insured_count,
        premium_type=PremiumType.FIXED.value,
        details=[{
            "type": PremiumType.FIXED.value,
            "premium_per_person": float(per_person),
            "duration": duration.raw or "1年",
            "billing": "monthly" if duration.is_monthly else "annual",
        }],
    )


def compute_premium(
    session: Session,
    product_id: Optional[int],
    plan_id: Optional[int],
    job_class: Optional[str],
    insured_count: Optional[int],
    duration: Optional[str],
    liability_selections: Optional[List[Dict[str, Any]]],
    as_of: Optional[date] = None,
    logger: Optional[logging.Logger] = None
) -> PremiumResult:
    """
    Compute the premium for one plan selection.

    Args:
        session: Database session
        product_id: Product ID
        plan_id: Plan ID
        job_class: Occupational risk tier (calculated rates only)
        insured_count: Number of insured persons, positive
        duration: Coverage period string, e.g. "1年" or "6个月"
        liability_selections: [{"liability_id": .., "coverage_amount": ..}]
        as_of: Rate validity date (defaults to today)
        logger: Logger used for skipped liabilities

    Returns:
        PremiumResult with per-person and total premium
    """
    logger = logger or logging.getLogger("policyhub")

    if not product_id or not plan_id or not insured_count:
        raise PremiumInputError("product_id, plan_id and insured_count are required")
    if isinstance(insured_count, bool) or not isinstance(insured_count, int) or insured_count <= 0:
        raise PremiumInputError("insured_count must be a positive integer")

    fixed = find_fixed_premium(session, product_id, plan_id)
    if fixed is not None:
        parsed = Duration.parse(duration)
        logger.info(
            f"Fixed premium selected | product_id={product_id} | plan_id={plan_id} | "
            f"duration={parsed.raw!r} | billing={'monthly' if parsed.is_monthly else 'annual'}"
        )
        return calculate_fixed_premium(
            to_decimal(fixed.monthly_premium),
            to_decimal(fixed.annual_premium),
            parsed,
            insured_count
        )

    if not liability_selections or not job_class:
        raise PremiumInputError("liability_selections and job_class are required for calculated rates")

    per_person = Decimal("0")
    details = []
    for selection in liability_selections:
        liability_id = selection.get("liability_id")
        coverage_amount = selection.get("coverage_amount")

        quote = resolve_rate(session, product_id, liability_id, job_class, coverage_amount, as_of)
        if quote is None:
            logger.warning(
                f"Rate not found, liability skipped | product_id={product_id} | "
                f"liability_id={liability_id} | job_class={job_class} | "
                f"coverage_amount={coverage_amount}"
            )
            continue

        details.append(quote.to_detail())
        per_person += quote.premium

    per_person = round_money(per_person)
    return PremiumResult(
        premium_per_person=per_person,
        total_premium=round_money(per_person * insured_count),
        insured_count=insured_count,
        premium_type=PremiumType.CALCULATED.value,
        details=details,
    )
