"""
Products router for catalogue reads and intercept rule configuration.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from typing import Dict, Any, List, Optional
import json
import logging

from policyhub.schemas import ApiResponse
from policyhub.deps import get_request_logger
from policyhub.db import get_session
from policyhub.models import Product, Plan, InsuranceCompany, RecordStatus
from policyhub.services.interception import load_rule_set, describe_rules

router = APIRouter()


def _product_row(product: Product, insurer: Optional[InsuranceCompany]) -> Dict[str, Any]:
    row = product.model_dump()
    row["company_code"] = insurer.company_code if insurer else None
    row["company_name"] = insurer.company_name if insurer else None
    return row


def _plan_row(plan: Plan) -> Dict[str, Any]:
    row = plan.model_dump()
    row["duration_options"] = json.loads(plan.duration_options or "[]")
    return row


@router.get("/products", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_products(
    company_code: Optional[str] = None,
    session: Session = Depends(get_session)
):
    """List enabled products, optionally for one insurer."""
    statement = (
        select(Product, InsuranceCompany)
        .join(InsuranceCompany, Product.company_id == InsuranceCompany.company_id)
        .where(Product.status == RecordStatus.ENABLED.value)
    )
    # The portal sends the literal "undefined" when nothing is selected
    if company_code and company_code != "undefined":
        statement = statement.where(InsuranceCompany.company_code == company_code)
    statement = statement.order_by(Product.product_id)

    rows = [_product_row(product, insurer) for product, insurer in session.exec(statement).all()]
    return ApiResponse(data=rows, count=len(rows))


@router.get("/products/intercept-rules/list", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_intercept_rules(
    session: Session = Depends(get_session),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    """Flattened view of every configured intercept rule for the admin console."""
    rows = describe_rules(session, logger)
    return ApiResponse(data=rows, count=len(rows))


@router.get("/products/{product_id}", response_model=ApiResponse[Dict[str, Any]])
async def get_product(
    product_id: int,
    session: Session = Depends(get_session)
):
    product = session.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    insurer = session.get(InsuranceCompany, product.company_id)
    return ApiResponse(data=_product_row(product, insurer))


@router.get("/products/{product_id}/plans", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_product_plans(
    product_id: int,
    session: Session = Depends(get_session)
):
    """Enabled plans of a product with parsed duration options."""
    plans = session.exec(
        select(Plan)
        .where(Plan.product_id == product_id, Plan.status == RecordStatus.ENABLED.value)
        .order_by(Plan.plan_id)
    ).all()
    rows = [_plan_row(plan) for plan in plans]
    return ApiResponse(data=rows, count=len(rows))


@router.get("/products/{product_id}/intercept-rules", response_model=ApiResponse[Dict[str, Any]])
async def get_intercept_rules(
    product_id: int,
    session: Session = Depends(get_session),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    """The parsed rule set of the product's insurer, or an empty object."""
    product = session.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    rule_set = load_rule_set(session, product.company_id, logger)
    return ApiResponse(data=rule_set.to_dict())
