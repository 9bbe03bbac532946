"""
Main FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from policyhub.db import initialize_database
from policyhub.routers import premium, applications, products, plans
from policyhub.middleware import RequestLoggingMiddleware, configure_logging
from policyhub.cache import config_cache
from policyhub.services.applications import NotFoundError, ApplicationStateError
from policyhub.services.interception import InterceptViolation
from policyhub.services.pricing import PremiumInputError
import logging

configure_logging()
logger = logging.getLogger("policyhub")

app = FastAPI(
    title="PolicyHub Group Insurance API",
    description="Premium quotation, underwriting interception and application submission",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestLoggingMiddleware)

# Add CORS middleware (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, message: str = None) -> JSONResponse:
    content = {"success": False, "error": error}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        fields.append(f"{location}: {error.get('msg')}")
    return _error(400, "Invalid request", "; ".join(fields))


@app.exception_handler(InterceptViolation)
async def intercept_violation_handler(request: Request, exc: InterceptViolation):
    return _error(400, exc.kind, exc.message)


@app.exception_handler(PremiumInputError)
async def premium_input_handler(request: Request, exc: PremiumInputError):
    return _error(400, "Invalid premium request", str(exc))


@app.exception_handler(ApplicationStateError)
async def application_state_handler(request: Request, exc: ApplicationStateError):
    return _error(400, "Invalid application request", str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, "Not found", str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception(f"Unhandled error | request_id={request_id} | path={request.url.path}")
    return _error(500, "Internal server error")


@app.on_event("startup")
async def startup_event():
    """Initialize database and load static defaults on startup."""
    logger.info("Starting PolicyHub API...")

    initialize_database()
    logger.info("Database initialized")

    config_cache.get_defaults()
    logger.info(f"Defaults loaded | intercept_channel={config_cache.get_intercept_channel()}")

    logger.info("Startup complete")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "PolicyHub Group Insurance API", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# Include all routers
app.include_router(premium.router, prefix="/api", tags=["premium"])
app.include_router(applications.router, prefix="/api", tags=["applications"])
app.include_router(products.router, prefix="/api", tags=["products"])
app.include_router(plans.router, prefix="/api", tags=["plans"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
