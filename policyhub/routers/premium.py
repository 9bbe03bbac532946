"""
Premium router for quotations and rate lookups.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from typing import Dict, Any, List, Optional
from datetime import date
import logging

from policyhub.schemas import ApiResponse, PremiumCalculationRequest, PremiumCalculationResult
from policyhub.deps import get_request_logger, get_today
from policyhub.db import get_session
from policyhub.models import Product
from policyhub.services.pricing import compute_premium
from policyhub.services.rates import lookup_rate, list_rates

router = APIRouter()


@router.post("/premium/calculate", response_model=ApiResponse[PremiumCalculationResult])
async def calculate_premium(
    request: PremiumCalculationRequest,
    session: Session = Depends(get_session),
    today: date = Depends(get_today),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    """
    Quote a premium for one plan selection.

    This endpoint:
    1. Validates the required fields
    2. Uses the plan's fixed premium when one is configured
    3. Otherwise sums the liability rates for the job class
    4. Multiplies by the insured count
    """
    logger.info(
        f"Premium calculation | product_id={request.product_id} | plan_id={request.plan_id} | "
        f"job_class={request.job_class} | insured_count={request.insured_count} | "
        f"duration={request.duration!r}"
    )

    if not request.product_id:
        raise HTTPException(status_code=400, detail="product_id is required")
    if not request.plan_id:
        raise HTTPException(status_code=400, detail="plan_id is required")
    if not request.insured_count or request.insured_count <= 0:
        raise HTTPException(status_code=400, detail="insured_count must be a positive integer")

    if session.get(Product, request.product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")

    selections = None
    if request.liability_selections is not None:
        selections = [selection.model_dump() for selection in request.liability_selections]

    result = compute_premium(
        session,
        request.product_id,
        request.plan_id,
        request.job_class,
        request.insured_count,
        request.duration,
        selections,
        as_of=today,
        logger=logger,
    )

    return ApiResponse(data=PremiumCalculationResult(**result.to_dict()))


@router.get("/premium/rates", response_model=ApiResponse[Dict[str, Any]])
async def get_rate(
    product_id: Optional[int] = None,
    liability_id: Optional[int] = None,
    job_class: Optional[str] = None,
    coverage_amount: Optional[str] = None,
    session: Session = Depends(get_session),
    today: date = Depends(get_today)
):
    """Look up the rate row valid today for an exact key."""
    missing = [
        name for name, value in (
            ("product_id", product_id),
            ("liability_id", liability_id),
            ("job_class", job_class),
            ("coverage_amount", coverage_amount),
        ) if not value
    ]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing query parameters: {', '.join(missing)}")

    rate = lookup_rate(session, product_id, liability_id, job_class, coverage_amount, today)
    if rate is None:
        raise HTTPException(status_code=404, detail="Rate not found")

    return ApiResponse(data=rate.model_dump(include={
        "rate_id", "base_rate", "rate_factor", "min_premium", "max_premium",
        "effective_date", "expiry_date"
    }))


@router.get("/premium/rates/list", response_model=ApiResponse[List[Dict[str, Any]]])
async def get_rate_list(
    product_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    premium_type: Optional[str] = None,
    session: Session = Depends(get_session)
):
    """List enabled rates; plan-less calculated rows of fixed-premium products are hidden."""
    rows = list_rates(session, product_id=product_id, plan_id=plan_id, premium_type=premium_type)
    return ApiResponse(data=rows, count=len(rows))
