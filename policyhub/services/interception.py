"""
Interception rule engine for application submission.

Rule sets are JSON blobs stored on the insurer's channel API config. Each
present key becomes one rule object; rules run in a fixed order and the
first violation aborts the submission.
"""

from datetime import date
from typing import Dict, Any, List, Optional, ClassVar, Iterable, Union
import json
import logging

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import func
from sqlmodel import Session, select

from policyhub.cache import config_cache
from policyhub.models import (
    Application, ApplicationPlan, InsuredPerson, Policy, Product, InsurerApiConfig,
    InsuranceCompany, RecordStatus
)


class InterceptViolation(Exception):
    """A configured business rule blocked the application."""

    def __init__(self, kind: str, message: str, person: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.person = person

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class InsuredPersonContext(BaseModel):
    name: Optional[str] = None
    id_number: Optional[str] = None
    birth_date: Optional[date] = None


class ApplicationContext(BaseModel):
    """Facts about an incoming application the rules are evaluated against."""
    product_id: int
    province: Optional[str] = None
    plan_insured_counts: List[int] = Field(default_factory=list)
    insured_persons: List[InsuredPersonContext] = Field(default_factory=list)
    today: date = Field(default_factory=date.today)

    @property
    def total_insured_count(self) -> int:
        return sum(count or 0 for count in self.plan_insured_counts)


class RuleLookups:
    """Database lookups needed by the roster rules, bound to one session."""

    def __init__(self, session: Session):
        self.session = session

    def has_open_application(self, id_number: str, product_id: int, statuses: Iterable[str]) -> bool:
        statement = (
            select(Application.application_no)
            .join(ApplicationPlan, ApplicationPlan.application_id == Application.application_id)
            .join(InsuredPerson, InsuredPerson.application_id == Application.application_id)
            .where(
                InsuredPerson.id_number == id_number,
                Application.status.in_(list(statuses)),
                Application.product_id == product_id,
            )
            .limit(1)
        )
        return self.session.exec(statement).first() is not None

    def count_policies(self, id_number: str, product_id: int, statuses: Iterable[str]) -> int:
        statement = (
            select(func.count(func.distinct(Policy.policy_id)))
            .join(Application, Policy.application_id == Application.application_id)
            .join(InsuredPerson, InsuredPerson.application_id == Application.application_id)
            .where(
                InsuredPerson.id_number == id_number,
                Policy.status.in_(list(statuses)),
                Application.product_id == product_id,
            )
        )
        return self.session.exec(statement).one() or 0


def calculate_age(birth_date: date, today: date) -> int:
    """Whole years between birth_date and today."""
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def _person_label(person: InsuredPersonContext) -> str:
    return person.name or ""


class InterceptRule(BaseModel):
    """Base class for one configured rule."""
    key: ClassVar[str] = ""
    kind: ClassVar[str] = ""
    rule_type: ClassVar[str] = ""
    priority: ClassVar[int] = 0
    needs_roster: ClassVar[bool] = False

    description: Optional[str] = None

    def check(self, context: ApplicationContext, lookups: Optional[RuleLookups]) -> None:
        raise NotImplementedError

    def condition_value(self) -> str:
        return ""

    def default_description(self) -> str:
        return ""


class RegionRestriction(InterceptRule):
    key: ClassVar[str] = "region_restriction"
    kind: ClassVar[str] = "RegionDenied"
    rule_type: ClassVar[str] = "region"
    priority: ClassVar[int] = 1

    denied_regions: List[str] = Field(default_factory=list)

    @field_validator("denied_regions", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    def check(self, context, lookups):
        if context.province and context.province in self.denied_regions:
            raise InterceptViolation(
                self.kind,
                f"Applications from region {context.province} are not accepted"
            )

    def condition_value(self):
        return "、".join(self.denied_regions)

    def default_description(self):
        return f"Denied regions: {self.condition_value()}"


class MinInsuredCount(InterceptRule):
    key: ClassVar[str] = "min_insured_count"
    kind: ClassVar[str] = "InsuredCountTooLow"
    rule_type: ClassVar[str] = "insured_count"
    priority: ClassVar[int] = 3

    min_count: Optional[int] = None

    @property
    def effective_min_count(self) -> int:
        return self.min_count or config_cache.get_rule_defaults()["min_insured_count"]

    def check(self, context, lookups):
        total = context.total_insured_count
        if total < self.effective_min_count:
            raise InterceptViolation(
                self.kind,
                f"Minimum insured count is {self.effective_min_count}, got {total}"
            )

    def condition_value(self):
        return f">= {self.effective_min_count}"

    def default_description(self):
        return f"At least {self.effective_min_count} insured persons"


class AgeRestriction(InterceptRule):
    key: ClassVar[str] = "age_restriction"
    kind: ClassVar[str] = "AgeOutOfRange"
    rule_type: ClassVar[str] = "age"
    priority: ClassVar[int] = 2
    needs_roster: ClassVar[bool] = True

    min_age: Optional[int] = None
    max_age: Optional[int] = None

    @property
    def bounds(self):
        defaults = config_cache.get_rule_defaults()
        return self.min_age or defaults["min_age"], self.max_age or defaults["max_age"]

    def check(self, context, lookups):
        min_age, max_age = self.bounds
        for person in context.insured_persons:
            if not person.id_number or not person.birth_date:
                continue
            age = calculate_age(person.birth_date, context.today)
            if age < min_age or age > max_age:
                raise InterceptViolation(
                    self.kind,
                    f"Insured person {_person_label(person)} is {age} years old, "
                    f"outside the allowed range {min_age}-{max_age}",
                    person=person.model_dump(mode="json"),
                )

    def condition_value(self):
        return "{}-{}".format(*self.bounds)

    def default_description(self):
        return "Insured age {} to {} inclusive".format(*self.bounds)


class DuplicateCheck(InterceptRule):
    key: ClassVar[str] = "duplicate_application_check"
    kind: ClassVar[str] = "DuplicateApplication"
    rule_type: ClassVar[str] = "duplicate_application"
    priority: ClassVar[int] = 4
    needs_roster: ClassVar[bool] = True

    check_scope: Optional[str] = None

    def check(self, context, lookups):
        statuses = config_cache.get_duplicate_statuses()
        for person in context.insured_persons:
            if not person.id_number:
                continue
            if lookups.has_open_application(person.id_number, context.product_id, statuses):
                raise InterceptViolation(
                    self.kind,
                    f"Insured person {_person_label(person)} (ID {person.id_number}) "
                    f"already has an application for this product",
                    person=person.model_dump(mode="json"),
                )

    def condition_value(self):
        return "platform only" if self.check_scope == "platform_only" else "all platforms"

    def default_description(self):
        return "Duplicate application check (platform database only)"


class PolicyLimitCheck(InterceptRule):
    key: ClassVar[str] = "policy_limit_check"
    kind: ClassVar[str] = "PolicyLimitExceeded"
    rule_type: ClassVar[str] = "policy_limit"
    priority: ClassVar[int] = 5
    needs_roster: ClassVar[bool] = True

    max_policies_per_employee: Optional[int] = None
    check_scope: Optional[str] = None

    @property
    def effective_max(self) -> int:
        return (self.max_policies_per_employee
                or config_cache.get_rule_defaults()["max_policies_per_employee"])

    def check(self, context, lookups):
        statuses = config_cache.get_counted_policy_statuses()
        for person in context.insured_persons:
            if not person.id_number:
                continue
            count = lookups.count_policies(person.id_number, context.product_id, statuses)
            if count >= self.effective_max:
                raise InterceptViolation(
                    self.kind,
                    f"Insured person {_person_label(person)} (ID {person.id_number}) "
                    f"already holds {count} active policies, limit is {self.effective_max}",
                    person=person.model_dump(mode="json"),
                )

    def condition_value(self):
        return f"<= {self.effective_max}"

    def default_description(self):
        return f"At most {self.effective_max} policies per employee (platform database only)"


# Evaluation order
RULE_TYPES = [RegionRestriction, MinInsuredCount, AgeRestriction, DuplicateCheck, PolicyLimitCheck]


class InterceptRuleSet:
    """Ordered rule objects parsed from an intercept_rules_json blob."""

    def __init__(self, rules: List[InterceptRule], raw: Dict[str, Any]):
        self.rules = rules
        self.raw = raw

    @classmethod
    def parse(
        cls,
        raw: Union[str, Dict[str, Any], None],
        logger: Optional[logging.Logger] = None
    ) -> "InterceptRuleSet":
        logger = logger or logging.getLogger("policyhub")

        if raw is None or raw == "":
            return cls([], {})
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.error(f"Invalid intercept rules JSON, rules ignored | error={e}")
                return cls([], {})
        if not isinstance(raw, dict):
            logger.error(f"Intercept rules must be a JSON object, rules ignored | type={type(raw).__name__}")
            return cls([], {})

        rules = []
        for rule_type in RULE_TYPES:
            config = raw.get(rule_type.key)
            if config is None or config is False:
                continue
            if not isinstance(config, dict):
                config = {}
            try:
                rules.append(rule_type(**config))
            except ValidationError as e:
                logger.error(
                    f"Invalid intercept rule config, rule ignored | rule={rule_type.key} | "
                    f"errors={e.error_count()} | detail={e.errors()[0].get('msg')}"
                )
        return cls(rules, raw)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self):
        return len(self.rules)

    def to_dict(self) -> Dict[str, Any]:
        return self.raw


def evaluate(
    rule_set: InterceptRuleSet,
    context: ApplicationContext,
    lookups: Optional[RuleLookups] = None,
    logger: Optional[logging.Logger] = None
) -> None:
    """
    Run every configured rule in order.

    Raises:
        InterceptViolation: on the first failing rule
    """
    logger = logger or logging.getLogger("policyhub")
    for rule in rule_set:
        if rule.needs_roster and not context.insured_persons:
            continue
        try:
            rule.check(context, lookups)
        except InterceptViolation as violation:
            logger.warning(
                f"Application intercepted | product_id={context.product_id} | "
                f"kind={violation.kind} | message={violation.message}"
            )
            raise


def load_rule_set(
    session: Session,
    company_id: Optional[int],
    logger: Optional[logging.Logger] = None
) -> InterceptRuleSet:
    """Read the rule set of an insurer's enabled channel config."""
    if not company_id:
        return InterceptRuleSet([], {})

    statement = (
        select(InsurerApiConfig.intercept_rules_json)
        .where(
            InsurerApiConfig.company_id == company_id,
            InsurerApiConfig.channel_code == config_cache.get_intercept_channel(),
            InsurerApiConfig.status == RecordStatus.ENABLED.value,
        )
        .order_by(InsurerApiConfig.updated_at.desc())
        .limit(1)
    )
    return InterceptRuleSet.parse(session.exec(statement).first(), logger)


def describe_rules(session: Session, logger: Optional[logging.Logger] = None) -> List[Dict[str, Any]]:
    """
    Flatten every enabled rule set into admin listing rows.

    One row is produced per rule per enabled product of the insurer.
    """
    logger = logger or logging.getLogger("policyhub")

    configs = session.exec(
        select(InsurerApiConfig, InsuranceCompany.company_name)
        .join(InsuranceCompany, InsurerApiConfig.company_id == InsuranceCompany.company_id)
        .where(
            InsurerApiConfig.status == RecordStatus.ENABLED.value,
            InsurerApiConfig.intercept_rules_json.is_not(None),
        )
        .order_by(InsurerApiConfig.updated_at.desc())
    ).all()

    rows = []
    for config, company_name in configs:
        rule_set = InterceptRuleSet.parse(config.intercept_rules_json, logger)
        if not len(rule_set):
            continue
        products = session.exec(
            select(Product).where(
                Product.company_id == config.company_id,
                Product.status == RecordStatus.ENABLED.value,
            )
            .order_by(Product.product_id)
        ).all()
        for rule in sorted(rule_set, key=lambda r: r.priority):
            for product in products:
                rows.append({
                    "rule_id": f"{config.config_id}_{rule.rule_type}_{product.product_id}",
                    "rule_type": rule.rule_type,
                    "error_kind": rule.kind,
                    "insurance_company_code": config.company_code,
                    "insurance_company_name": company_name,
                    "product_code": product.product_code,
                    "product_name": product.product_name,
                    "condition_value": rule.condition_value(),
                    "action": "intercept",
                    "priority": rule.priority,
                    "status": config.status,
                    "description": rule.description or rule.default_description(),
                })
    return rows
