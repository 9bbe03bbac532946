"""
SQLModel database models for the group insurance platform.
"""

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, date
from enum import Enum


class RecordStatus(str, Enum):
    """Soft status flag shared by catalogue rows."""
    ENABLED = "enabled"
    DISABLED = "disabled"


class PremiumType(str, Enum):
    """Discriminator for rate rows."""
    CALCULATED = "calculated"
    FIXED = "fixed"


class ApplicationStatus(str, Enum):
    """Application lifecycle. Only DRAFT -> PENDING_UNDERWRITING happens here."""
    DRAFT = "draft"
    PENDING_UNDERWRITING = "pending_underwriting"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    EXPIRED = "expired"


class PolicyStatus(str, Enum):
    ACTIVE = "active"
    IN_FORCE = "in_force"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class InsuranceCompany(SQLModel, table=True):
    """Insurer offering products through the platform."""
    __tablename__ = "insurance_companies"

    company_id: Optional[int] = Field(default=None, primary_key=True)
    company_code: str = Field(unique=True, index=True)
    company_name: str
    status: str = Field(default=RecordStatus.ENABLED.value)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class InsurerApiConfig(SQLModel, table=True):
    """Per insurer + channel API config carrying the intercept rule blob."""
    __tablename__ = "insurance_api_configs"

    config_id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(foreign_key="insurance_companies.company_id", index=True)
    company_code: str
    channel_code: str
    intercept_rules_json: Optional[str] = None  # JSON string
    status: str = Field(default=RecordStatus.ENABLED.value)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Product(SQLModel, table=True):
    """Insurer product. Never hard-deleted once referenced."""
    __tablename__ = "insurance_products"

    product_id: Optional[int] = Field(default=None, primary_key=True)
    product_code: str = Field(index=True)
    product_name: str
    product_type: Optional[str] = None
    company_id: int = Field(foreign_key="insurance_companies.company_id")
    status: str = Field(default=RecordStatus.ENABLED.value)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Plan(SQLModel, table=True):
    """Product variant."""
    __tablename__ = "product_plans"

    plan_id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="insurance_products.product_id", index=True)
    plan_code: str
    plan_name: str
    job_class_range: Optional[str] = None
    duration_options: str = Field(default="[]")  # JSON string
    payment_type: Optional[str] = None
    description: Optional[str] = None
    status: str = Field(default=RecordStatus.ENABLED.value)


class Liability(SQLModel, table=True):
    """Coverage line item owned by an insurer."""
    __tablename__ = "company_liabilities"

    liability_id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(foreign_key="insurance_companies.company_id")
    liability_code: str
    liability_name: str
    liability_type: Optional[str] = None
    unit_type: str = Field(default="amount")  # amount / days / ratio
    clause_id: Optional[int] = None
    is_additional: bool = False


class PlanLiability(SQLModel, table=True):
    """Binds a liability to a plan with its selectable coverages."""
    __tablename__ = "plan_liabilities"

    id: Optional[int] = Field(default=None, primary_key=True)
    plan_id: int = Field(foreign_key="product_plans.plan_id", index=True)
    liability_id: int = Field(foreign_key="company_liabilities.liability_id")
    is_required: bool = False
    coverage_options: str = Field(default="[]")  # JSON string
    default_coverage: Optional[str] = None
    min_coverage: Optional[str] = None
    max_coverage: Optional[str] = None
    unit: Optional[str] = None
    display_order: int = 0


class Rate(SQLModel, table=True):
    """Priced rule: a calculated liability rate or a fixed plan premium."""
    __tablename__ = "premium_rates"

    rate_id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="insurance_products.product_id", index=True)
    plan_id: Optional[int] = Field(default=None, foreign_key="product_plans.plan_id")
    liability_id: Optional[int] = Field(default=None, foreign_key="company_liabilities.liability_id")
    job_class: Optional[str] = None
    coverage_amount: Optional[str] = None
    base_rate: Optional[float] = None
    rate_factor: Optional[float] = None
    min_premium: Optional[float] = None
    max_premium: Optional[float] = None
    monthly_premium: Optional[float] = None
    annual_premium: Optional[float] = None
    premium_type: str = Field(default=PremiumType.CALCULATED.value)
    effective_date: date = Field(default_factory=date.today)
    expiry_date: Optional[date] = None
    status: str = Field(default=RecordStatus.ENABLED.value)


class Company(SQLModel, table=True):
    """Applicant enterprise, upserted by credit code."""
    __tablename__ = "companies"

    company_id: Optional[int] = Field(default=None, primary_key=True)
    company_name: str
    credit_code: str = Field(unique=True, index=True)
    province: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    industry: Optional[str] = None
    status: str = Field(default=RecordStatus.ENABLED.value)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Application(SQLModel, table=True):
    """Group insurance application."""
    __tablename__ = "applications"

    application_id: Optional[int] = Field(default=None, primary_key=True)
    application_no: str = Field(unique=True, index=True)
    company_id: int = Field(foreign_key="companies.company_id")
    product_id: int = Field(foreign_key="insurance_products.product_id", index=True)
    product_name: Optional[str] = None
    product_code: Optional[str] = None
    total_premium: float = 0
    insured_count: int = 0
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None
    status: str = Field(default=ApplicationStatus.DRAFT.value, index=True)
    draft_data: Optional[str] = None  # JSON string
    insurance_company_code: Optional[str] = None
    insurance_company: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    submitted_at: Optional[datetime] = None
    underwritten_at: Optional[datetime] = None


class ApplicationPlan(SQLModel, table=True):
    """Plan instance: one plan selection within an application."""
    __tablename__ = "application_plans"

    instance_id: Optional[int] = Field(default=None, primary_key=True)
    application_id: int = Field(foreign_key="applications.application_id", index=True)
    plan_id: int = Field(foreign_key="product_plans.plan_id")
    plan_name: Optional[str] = None
    job_class: Optional[str] = None
    duration: Optional[str] = None
    insured_count: int = 0
    plan_premium: float = 0


class PlanInstanceLiability(SQLModel, table=True):
    """Liability selection within a plan instance."""
    __tablename__ = "plan_instance_liabilities"

    id: Optional[int] = Field(default=None, primary_key=True)
    instance_id: int = Field(foreign_key="application_plans.instance_id", index=True)
    liability_id: int = Field(foreign_key="company_liabilities.liability_id")
    coverage_amount: Optional[str] = None
    coverage_value: Optional[float] = None
    unit: Optional[str] = None
    is_selected: bool = True


class InsuredPerson(SQLModel, table=True):
    """Roster entry attached to an application."""
    __tablename__ = "insured_persons"

    id: Optional[int] = Field(default=None, primary_key=True)
    application_id: int = Field(foreign_key="applications.application_id", index=True)
    name: Optional[str] = None
    id_number: Optional[str] = Field(default=None, index=True)
    birth_date: Optional[date] = None
    gender: Optional[str] = None


class Policy(SQLModel, table=True):
    """Issued policy. Created by admin workflows, counted here."""
    __tablename__ = "policies"

    policy_id: Optional[int] = Field(default=None, primary_key=True)
    application_id: int = Field(foreign_key="applications.application_id", index=True)
    policy_no: str = Field(unique=True)
    status: str = Field(default=PolicyStatus.ACTIVE.value)
    created_at: datetime = Field(default_factory=datetime.utcnow)
