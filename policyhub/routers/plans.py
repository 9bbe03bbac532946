"""
Plans router for plan details and their liability configuration.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from typing import Dict, Any, List
import json

from policyhub.schemas import ApiResponse
from policyhub.db import get_session
from policyhub.models import Plan, PlanLiability, Liability, Product, InsuranceCompany

router = APIRouter()


@router.get("/plans/{plan_id}", response_model=ApiResponse[Dict[str, Any]])
async def get_plan(
    plan_id: int,
    session: Session = Depends(get_session)
):
    """Plan details with its product and insurer."""
    result = session.exec(
        select(Plan, Product, InsuranceCompany)
        .join(Product, Plan.product_id == Product.product_id)
        .join(InsuranceCompany, Product.company_id == InsuranceCompany.company_id)
        .where(Plan.plan_id == plan_id)
    ).first()
    if not result:
        raise HTTPException(status_code=404, detail="Plan not found")

    plan, product, insurer = result
    row = plan.model_dump()
    row["duration_options"] = json.loads(plan.duration_options or "[]")
    row["product_name"] = product.product_name
    row["product_code"] = product.product_code
    row["company_code"] = insurer.company_code
    row["company_name"] = insurer.company_name
    return ApiResponse(data=row)


@router.get("/plans/{plan_id}/liabilities", response_model=ApiResponse[List[Dict[str, Any]]])
async def get_plan_liabilities(
    plan_id: int,
    session: Session = Depends(get_session)
):
    """Liabilities bound to a plan, in display order, with coverage options."""
    results = session.exec(
        select(PlanLiability, Liability)
        .join(Liability, PlanLiability.liability_id == Liability.liability_id)
        .where(PlanLiability.plan_id == plan_id)
        .order_by(PlanLiability.display_order, PlanLiability.id)
    ).all()

    rows = []
    for binding, liability in results:
        rows.append({
            "id": binding.id,
            "liability_id": liability.liability_id,
            "liability_code": liability.liability_code,
            "liability_name": liability.liability_name,
            "liability_type": liability.liability_type,
            "unit_type": liability.unit_type,
            "is_additional": liability.is_additional,
            "clause_id": liability.clause_id,
            "is_required": bool(binding.is_required),
            "coverage_options": json.loads(binding.coverage_options or "[]"),
            "default_coverage": binding.default_coverage,
            "min_coverage": binding.min_coverage,
            "max_coverage": binding.max_coverage,
            "unit": binding.unit,
            "display_order": binding.display_order,
        })
    return ApiResponse(data=rows, count=len(rows))
