"""
Application submission and lifecycle service.
"""

from datetime import date, datetime
from typing import Dict, Any, List, Optional, Tuple
import json
import logging
import math
import random
import string
import time

from sqlalchemy import func, or_
from sqlmodel import Session, select

from policyhub.cache import config_cache
from policyhub.models import (
    Application, ApplicationPlan, ApplicationStatus, Company, InsuranceCompany,
    InsuredPerson, Plan, PlanInstanceLiability, Product
)
from policyhub.schemas import ApplicationCreateRequest, CompanyInfo, DraftSaveRequest
from policyhub.services.interception import (
    ApplicationContext, InsuredPersonContext, RuleLookups, evaluate, load_rule_set
)
from policyhub.services.pricing import compute_premium, PremiumInputError


class NotFoundError(LookupError):
    """Requested row does not exist."""


class ApplicationStateError(ValueError):
    """Operation not allowed in the application's current state or input."""


def generate_application_no() -> str:
    """APP + millisecond timestamp + 6 random uppercase alphanumerics."""
    prefix = config_cache.get_application_settings()["number_prefix"]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}{int(time.time() * 1000)}{suffix}"


def upsert_company(session: Session, company_info: CompanyInfo) -> Company:
    """Create the applicant company or refresh it by credit code."""
    company = session.exec(
        select(Company).where(Company.credit_code == company_info.credit_code)
    ).first()

    fields = {
        "company_name": company_info.name,
        "province": company_info.province,
        "city": company_info.city or "",
        "district": company_info.district,
        "address": company_info.address,
        "contact_name": company_info.contact_name,
        "contact_phone": company_info.contact_phone,
        "contact_email": company_info.contact_email,
    }

    if company is None:
        company = Company(credit_code=company_info.credit_code, industry=company_info.industry, **fields)
    else:
        for key, value in fields.items():
            if key == "company_name" and not value:
                continue
            setattr(company, key, value)
        company.updated_at = datetime.utcnow()

    session.add(company)
    session.flush()
    return company


def _get_product_with_insurer(session: Session, product_id: int) -> Tuple[Product, Optional[InsuranceCompany]]:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product, session.get(InsuranceCompany, product.company_id)


def _plan_premium(
    session: Session,
    product_id: int,
    instance,
    as_of: date,
    logger: logging.Logger
) -> float:
    """Price one plan instance; instances that cannot be priced are stored at 0."""
    try:
        result = compute_premium(
            session,
            product_id,
            instance.plan_id,
            instance.job_class,
            instance.insured_count,
            instance.duration,
            [selection.model_dump() for selection in instance.liability_selections],
            as_of=as_of,
            logger=logger,
        )
    except PremiumInputError as e:
        logger.info(f"Plan instance not priced | plan_id={instance.plan_id} | reason={e}")
        return 0.0
    return float(result.total_premium)


def create_application(
    session: Session,
    request: ApplicationCreateRequest,
    today: Optional[date] = None,
    logger: Optional[logging.Logger] = None
) -> Dict[str, Any]:
    """
    Run interception and persist an application in one transaction.

    This function:
    1. Loads the product and its insurer's rule set
    2. Evaluates the interception rules
    3. Upserts the applicant company
    4. Creates the application, plan instances, liability selections and roster
    5. Commits, or rolls back everything on any failure

    Raises:
        NotFoundError: product or plan missing
        InterceptViolation: a rule blocked the application
    """
    logger = logger or logging.getLogger("policyhub")
    today = today or date.today()

    try:
        product, insurer = _get_product_with_insurer(session, request.product_id)

        rule_set = load_rule_set(session, product.company_id, logger)
        context = ApplicationContext(
            product_id=product.product_id,
            province=request.company_info.province,
            plan_insured_counts=[p.insured_count for p in request.plan_instances],
            insured_persons=[
                InsuredPersonContext(name=p.name, id_number=p.id_number, birth_date=p.birth_date)
                for p in request.insured_persons
            ],
            today=today,
        )
        evaluate(rule_set, context, RuleLookups(session), logger)

        company = upsert_company(session, request.company_info)

        application = Application(
            application_no=generate_application_no(),
            company_id=company.company_id,
            product_id=product.product_id,
            product_name=product.product_name,
            product_code=product.product_code,
            total_premium=0,
            insured_count=context.total_insured_count,
            effective_date=request.effective_date,
            expiry_date=request.expiry_date,
            status=ApplicationStatus.DRAFT.value,
            insurance_company_code=insurer.company_code if insurer else None,
            insurance_company=insurer.company_name if insurer else None,
        )
        session.add(application)
        session.flush()

        total_premium = 0.0
        for instance in request.plan_instances:
            plan = session.get(Plan, instance.plan_id)
            if plan is None:
                raise NotFoundError(f"Plan {instance.plan_id} not found")

            plan_premium = _plan_premium(session, product.product_id, instance, today, logger)
            total_premium += plan_premium

            plan_row = ApplicationPlan(
                application_id=application.application_id,
                plan_id=instance.plan_id,
                plan_name=instance.plan_name or plan.plan_name,
                job_class=instance.job_class,
                duration=instance.duration,
                insured_count=instance.insured_count,
                plan_premium=plan_premium,
            )
            session.add(plan_row)
            session.flush()

            for selection in instance.liability_selections:
                session.add(PlanInstanceLiability(
                    instance_id=plan_row.instance_id,
                    liability_id=selection.liability_id,
                    coverage_amount=selection.coverage_amount,
                    coverage_value=selection.coverage_value,
                    unit=selection.unit,
                    is_selected=True,
                ))

        for person in request.insured_persons:
            session.add(InsuredPerson(
                application_id=application.application_id,
                name=person.name,
                id_number=person.id_number,
                birth_date=person.birth_date,
                gender=person.gender,
            ))

        application.total_premium = round(total_premium, 2)
        session.add(application)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"Application created | application_id={application.application_id} | "
        f"application_no={application.application_no} | product_id={product.product_id} | "
        f"insured_count={application.insured_count} | total_premium={application.total_premium}"
    )

    return {
        "application_id": application.application_id,
        "application_no": application.application_no,
    }


def _parse_datetime(value: str, name: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ApplicationStateError(f"{name} must be an ISO date, got {value!r}")


def list_applications(
    session: Session,
    keyword: Optional[str] = None,
    status: Optional[str] = None,
    company_name: Optional[str] = None,
    product_id: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """
    List applications with filters and pagination.

    Returns:
        Tuple of (rows, pagination)
    """
    page = max(1, page or 1)
    page_size = max(1, page_size or config_cache.get_application_settings()["page_size"])

    conditions = []
    if keyword:
        pattern = f"%{keyword}%"
        conditions.append(or_(Application.application_no.like(pattern), Company.company_name.like(pattern)))
    if status:
        conditions.append(Application.status == status)
    if company_name:
        conditions.append(Company.company_name.like(f"%{company_name}%"))
    if product_id:
        conditions.append(Application.product_id == product_id)
    if start_date:
        conditions.append(Application.created_at >= _parse_datetime(start_date, "start_date"))
    if end_date:
        conditions.append(Application.created_at <= _parse_datetime(end_date, "end_date"))

    statement = (
        select(Application, Company.company_name, Company.credit_code, InsuranceCompany.company_name)
        .join(Company, Application.company_id == Company.company_id)
        .join(InsuranceCompany, Application.insurance_company_code == InsuranceCompany.company_code,
              isouter=True)
        .where(*conditions)
        .order_by(Application.created_at.desc(), Application.application_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    rows = []
    for application, name, credit_code, insurer_name in session.exec(statement).all():
        row = application.model_dump(exclude={"draft_data"})
        row["company_name"] = name
        row["credit_code"] = credit_code
        row["insurance_company_name"] = insurer_name
        rows.append(row)

    total = session.exec(
        select(func.count(Application.application_id))
        .join(Company, Application.company_id == Company.company_id)
        .where(*conditions)
    ).one()

    pagination = {
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size),
    }
    return rows, pagination


def get_application(session: Session, application_id: int) -> Application:
    application = session.get(Application, application_id)
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def submit_for_underwriting(session: Session, application_id: int) -> Application:
    """Move a draft application to pending underwriting."""
    application = get_application(session, application_id)
    if application.status != ApplicationStatus.DRAFT.value:
        raise ApplicationStateError(
            f"Application {application.application_no} is {application.status}, only drafts can be submitted"
        )
    application.status = ApplicationStatus.PENDING_UNDERWRITING.value
    application.submitted_at = datetime.utcnow()
    application.updated_at = application.submitted_at
    session.add(application)
    session.commit()
    session.refresh(application)
    return application


def _draft_snapshot(request: DraftSaveRequest) -> Dict[str, Any]:
    return {
        "company_info": request.company_info.model_dump() if request.company_info else None,
        "product_id": request.product_id,
        "plans": request.plans,
        "employees": request.employees,
        "effective_date": request.effective_date,
        "expiry_date": request.expiry_date,
        "common_duration": request.common_duration,
        "selected_plan_ids": request.selected_plan_ids,
        "premiums": request.premiums,
    }


def save_draft(
    session: Session,
    request: DraftSaveRequest,
    logger: Optional[logging.Logger] = None
) -> Dict[str, Any]:
    """
    Save the portal form as a draft application.

    An unchanged snapshot only refreshes the newest draft's updated_at;
    a changed one creates a new draft row.
    """
    logger = logger or logging.getLogger("policyhub")

    if not request.company_info.credit_code:
        raise ApplicationStateError("company_info.credit_code is required")

    try:
        product, insurer = _get_product_with_insurer(session, request.product_id)
        company = upsert_company(session, request.company_info)

        snapshot = _draft_snapshot(request)
        snapshot_json = json.dumps(snapshot, ensure_ascii=False, sort_keys=True)

        existing = session.exec(
            select(Application)
            .where(
                Application.company_id == company.company_id,
                Application.product_id == product.product_id,
                Application.status == ApplicationStatus.DRAFT.value,
                Application.draft_data.is_not(None),
            )
            .order_by(Application.created_at.desc(), Application.application_id.desc())
            .limit(1)
        ).first()

        if existing is not None and _same_snapshot(existing.draft_data, snapshot):
            existing.updated_at = datetime.utcnow()
            session.add(existing)
            session.commit()
            return {
                "application_id": existing.application_id,
                "application_no": existing.application_no,
                "is_new": False,
                "message": "No changes detected, draft timestamp refreshed",
            }

        total_premium = sum(plan.get("totalPremium") or 0 for plan in request.plans)
        draft = Application(
            application_no=generate_application_no(),
            company_id=company.company_id,
            product_id=product.product_id,
            product_name=product.product_name,
            product_code=product.product_code,
            total_premium=total_premium,
            insured_count=len(request.employees),
            effective_date=request.effective_date,
            expiry_date=request.expiry_date,
            status=ApplicationStatus.DRAFT.value,
            draft_data=snapshot_json,
            insurance_company_code=insurer.company_code if insurer else None,
            insurance_company=insurer.company_name if insurer else None,
        )
        session.add(draft)
        session.commit()
        session.refresh(draft)
    except Exception:
        session.rollback()
        raise

    logger.info(f"Draft saved | application_id={draft.application_id} | company_id={company.company_id}")
    return {
        "application_id": draft.application_id,
        "application_no": draft.application_no,
        "is_new": True,
        "message": "Changes detected, new draft created" if existing is not None else "Draft saved",
    }


def _same_snapshot(stored: Optional[str], snapshot: Dict[str, Any]) -> bool:
    if not stored:
        return False
    try:
        return json.loads(stored) == json.loads(json.dumps(snapshot))
    except json.JSONDecodeError:
        return False


def list_drafts(
    session: Session,
    company_name: Optional[str] = None,
    credit_code: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Drafts grouped by company, then by product."""
    statement = (
        select(Application, Company.company_name, Company.credit_code)
        .join(Company, Application.company_id == Company.company_id)
        .where(Application.status == ApplicationStatus.DRAFT.value)
    )
    if company_name:
        statement = statement.where(Company.company_name.like(f"%{company_name}%"))
    if credit_code:
        statement = statement.where(Company.credit_code == credit_code)
    statement = statement.order_by(Application.updated_at.desc(), Application.application_id.desc())

    grouped: Dict[int, Dict[str, Any]] = {}
    for application, name, code in session.exec(statement).all():
        company = grouped.setdefault(application.company_id, {
            "company_id": application.company_id,
            "company_name": name,
            "credit_code": code,
            "products": [],
        })
        product = next((p for p in company["products"] if p["product_id"] == application.product_id), None)
        if product is None:
            product = {
                "product_id": application.product_id,
                "product_name": application.product_name,
                "drafts": [],
            }
            company["products"].append(product)
        product["drafts"].append({
            "application_id": application.application_id,
            "application_no": application.application_no,
            "total_premium": application.total_premium,
            "insured_count": application.insured_count,
            "effective_date": application.effective_date,
            "expiry_date": application.expiry_date,
            "created_at": application.created_at,
            "updated_at": application.updated_at,
        })
    return list(grouped.values())


def get_draft(session: Session, application_id: int, logger: Optional[logging.Logger] = None) -> Dict[str, Any]:
    logger = logger or logging.getLogger("policyhub")
    result = session.exec(
        select(Application, Company.company_name, Company.credit_code)
        .join(Company, Application.company_id == Company.company_id)
        .where(
            Application.application_id == application_id,
            Application.status == ApplicationStatus.DRAFT.value,
        )
    ).first()
    if result is None:
        raise NotFoundError(f"Draft {application_id} not found")

    application, name, code = result
    draft = application.model_dump()
    draft["company_name"] = name
    draft["credit_code"] = code
    try:
        draft["draft_data"] = json.loads(application.draft_data) if application.draft_data else {}
    except json.JSONDecodeError as e:
        logger.error(f"Invalid draft_data | application_id={application_id} | error={e}")
        draft["draft_data"] = {}
    return draft


def delete_draft(session: Session, application_id: int) -> None:
    """Delete a draft application together with its child rows."""
    application = session.get(Application, application_id)
    if application is None or application.status != ApplicationStatus.DRAFT.value:
        raise NotFoundError(f"Draft {application_id} not found or already deleted")

    try:
        plans = session.exec(
            select(ApplicationPlan).where(ApplicationPlan.application_id == application_id)
        ).all()
        for plan in plans:
            selections = session.exec(
                select(PlanInstanceLiability).where(PlanInstanceLiability.instance_id == plan.instance_id)
            ).all()
            for selection in selections:
                session.delete(selection)
            session.delete(plan)
        persons = session.exec(
            select(InsuredPerson).where(InsuredPerson.application_id == application_id)
        ).all()
        for person in persons:
            session.delete(person)
        session.flush()
        session.delete(application)
        session.commit()
    except Exception:
        session.rollback()
        raise
