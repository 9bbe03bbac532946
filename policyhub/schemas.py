"""
Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import date

T = TypeVar("T")


# Envelopes
class ApiResponse(BaseModel, Generic[T]):
    """Success envelope shared by every endpoint."""
    success: bool = True
    data: T
    message: Optional[str] = None
    count: Optional[int] = None


class Pagination(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class PaginatedResponse(ApiResponse[T], Generic[T]):
    pagination: Pagination


# Premium
class LiabilitySelection(BaseModel):
    """One chosen coverage line."""
    liability_id: int
    coverage_amount: Optional[str] = None
    coverage_value: Optional[float] = None
    unit: Optional[str] = None


class PremiumCalculationRequest(BaseModel):
    """Premium quotation request. Required fields are checked by the handler."""
    product_id: Optional[int] = None
    plan_id: Optional[int] = None
    liability_selections: Optional[List[LiabilitySelection]] = None
    job_class: Optional[str] = Field(None, description="Occupational risk tier")
    insured_count: Optional[int] = None
    duration: Optional[str] = Field(None, description="Coverage period, e.g. 1年 or 6个月")


class PremiumCalculationResult(BaseModel):
    premium_per_person: float
    total_premium: float
    insured_count: int
    premium_type: str
    premium_details: List[Dict[str, Any]]


# Applications
class CompanyInfo(BaseModel):
    """Applicant enterprise details."""
    name: Optional[str] = None
    credit_code: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    industry: Optional[str] = None


class PlanInstanceRequest(BaseModel):
    plan_id: int
    plan_name: Optional[str] = None
    job_class: Optional[str] = None
    duration: Optional[str] = None
    insured_count: int = Field(0, ge=0)
    liability_selections: List[LiabilitySelection] = Field(default_factory=list)


class InsuredPersonRequest(BaseModel):
    name: Optional[str] = None
    id_number: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None


class ApplicationCreateRequest(BaseModel):
    """Application submission. Required fields are checked by the handler."""
    company_info: Optional[CompanyInfo] = None
    product_id: Optional[int] = None
    plan_instances: Optional[List[PlanInstanceRequest]] = None
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None
    insured_persons: List[InsuredPersonRequest] = Field(default_factory=list)


class ApplicationCreated(BaseModel):
    application_id: int
    application_no: str


class DraftSaveRequest(BaseModel):
    """Portal form snapshot saved as a draft application."""
    company_info: Optional[CompanyInfo] = None
    product_id: Optional[int] = None
    plans: List[Dict[str, Any]] = Field(default_factory=list)
    employees: List[Dict[str, Any]] = Field(default_factory=list)
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None
    common_duration: Optional[str] = None
    selected_plan_ids: Dict[str, Any] = Field(default_factory=dict)
    premiums: Dict[str, Any] = Field(default_factory=dict)


class DraftSaved(BaseModel):
    application_id: int
    application_no: str
    is_new: bool
