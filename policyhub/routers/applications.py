"""
Applications router: submission with interception, drafts and lifecycle.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from typing import Dict, Any, List, Optional
from datetime import date
import logging

from policyhub.schemas import (
    ApiResponse, PaginatedResponse, Pagination, ApplicationCreateRequest, ApplicationCreated,
    DraftSaveRequest, DraftSaved
)
from policyhub.deps import get_request_logger, get_today
from policyhub.db import get_session
from policyhub.services import applications as application_service

router = APIRouter()


@router.post("/applications", response_model=ApiResponse[ApplicationCreated])
async def create_application(
    request: ApplicationCreateRequest,
    session: Session = Depends(get_session),
    today: date = Depends(get_today),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    """
    Submit a group insurance application.

    This endpoint:
    1. Validates the required fields
    2. Runs the insurer's interception rules
    3. Persists company, application, plan instances, selections and roster
       in one transaction

    An interception violation returns 400 with the rule kind and nothing is saved.
    """
    missing = [
        name for name, value in (
            ("company_info", request.company_info),
            ("product_id", request.product_id),
            ("plan_instances", request.plan_instances),
            ("effective_date", request.effective_date),
            ("expiry_date", request.expiry_date),
        ) if not value
    ]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    if not request.company_info.credit_code:
        raise HTTPException(status_code=400, detail="Missing required fields: company_info.credit_code")

    created = application_service.create_application(session, request, today=today, logger=logger)
    return ApiResponse(data=ApplicationCreated(**created), message="Application created")


@router.get("/applications", response_model=PaginatedResponse[List[Dict[str, Any]]])
async def list_applications(
    keyword: Optional[str] = None,
    status: Optional[str] = None,
    company_name: Optional[str] = None,
    product_id: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    session: Session = Depends(get_session)
):
    """List applications, drafts included."""
    rows, pagination = application_service.list_applications(
        session,
        keyword=keyword,
        status=status,
        company_name=company_name,
        product_id=product_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse(data=rows, pagination=Pagination(**pagination))


@router.post("/applications/draft", response_model=ApiResponse[DraftSaved])
async def save_draft(
    request: DraftSaveRequest,
    session: Session = Depends(get_session),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    """Save the portal form as a draft."""
    if not request.company_info or not request.product_id:
        raise HTTPException(status_code=400, detail="Missing required fields: company_info, product_id")

    saved = application_service.save_draft(session, request, logger=logger)
    message = saved.pop("message")
    return ApiResponse(data=DraftSaved(**saved), message=message)


@router.get("/applications/drafts", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_drafts(
    company_name: Optional[str] = None,
    credit_code: Optional[str] = None,
    session: Session = Depends(get_session)
):
    """Drafts grouped by company and product."""
    groups = application_service.list_drafts(session, company_name=company_name, credit_code=credit_code)
    return ApiResponse(data=groups, count=len(groups))


@router.get("/applications/drafts/{application_id}", response_model=ApiResponse[Dict[str, Any]])
async def get_draft(
    application_id: int,
    session: Session = Depends(get_session),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    return ApiResponse(data=application_service.get_draft(session, application_id, logger=logger))


@router.delete("/applications/drafts/{application_id}", response_model=ApiResponse[None])
async def delete_draft(
    application_id: int,
    session: Session = Depends(get_session)
):
    application_service.delete_draft(session, application_id)
    return ApiResponse(data=None, message="Draft deleted")


@router.get("/applications/{application_id}", response_model=ApiResponse[Dict[str, Any]])
async def get_application(
    application_id: int,
    session: Session = Depends(get_session)
):
    application = application_service.get_application(session, application_id)
    return ApiResponse(data=application.model_dump())


@router.post("/applications/{application_id}/underwriting", response_model=ApiResponse[Dict[str, Any]])
async def submit_for_underwriting(
    application_id: int,
    session: Session = Depends(get_session),
    logger: logging.LoggerAdapter = Depends(get_request_logger)
):
    """Submit a draft for underwriting."""
    application = application_service.submit_for_underwriting(session, application_id)
    logger.info(f"Submitted for underwriting | application_id={application_id}")
    return ApiResponse(
        data={"application_id": application.application_id, "status": application.status},
        message="Submitted for underwriting"
    )
