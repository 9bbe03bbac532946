"""
Database configuration and session management.
"""

from sqlmodel import SQLModel, create_engine, Session, select
from typing import Generator, Dict, Any
from datetime import date
import logging
import os
import json

# Import all models to ensure they are registered with SQLModel
from policyhub.models import (
    InsuranceCompany, InsurerApiConfig, Product, Plan, Liability,
    PlanLiability, Rate, Company, Application, ApplicationPlan,
    PlanInstanceLiability, InsuredPerson, Policy
)

logger = logging.getLogger("policyhub")

# Database URL - defaults to SQLite for development, MySQL via mysql+pymysql://
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/policyhub.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))


def build_engine(url: str = DATABASE_URL):
    """Create the engine; server databases get a bounded connection pool."""
    if url.startswith("sqlite"):
        if url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(url[len("sqlite:///"):]), exist_ok=True)
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        echo=False,
        pool_size=DB_POOL_SIZE,
        max_overflow=0,
        pool_timeout=DB_POOL_TIMEOUT,
        pool_pre_ping=True,
    )


# Create engine
engine = build_engine()


def create_db_and_tables():
    """Create database tables."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine) as session:
        yield session


def _parse_date(value):
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def load_seed_data(session: Session, seed_data: Dict[str, Any]) -> None:
    """
    Load a demo catalogue into the database.

    Rows are keyed by their explicit ids; existing ids are left untouched so
    the loader can run on every startup.
    """
    def add_missing(model, key: str, rows, **conversions):
        for row in rows:
            if session.get(model, row[key]) is not None:
                continue
            values = dict(row)
            for field_name, convert in conversions.items():
                if field_name in values:
                    values[field_name] = convert(values[field_name])
            session.add(model(**values))
        session.flush()

    as_json = lambda value: value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)

    add_missing(InsuranceCompany, "company_id", seed_data.get("insurance_companies", []))
    add_missing(InsurerApiConfig, "config_id", seed_data.get("api_configs", []),
                intercept_rules_json=as_json)
    add_missing(Product, "product_id", seed_data.get("products", []))
    add_missing(Plan, "plan_id", seed_data.get("plans", []), duration_options=as_json)
    add_missing(Liability, "liability_id", seed_data.get("liabilities", []))
    add_missing(PlanLiability, "id", seed_data.get("plan_liabilities", []),
                coverage_options=as_json)
    add_missing(Rate, "rate_id", seed_data.get("rates", []),
                effective_date=_parse_date, expiry_date=_parse_date)

    session.commit()


def load_seed_file(seed_file: str = None) -> None:
    """Load seed data from config/seed.json into the database."""
    seed_file = seed_file or os.path.join(os.path.dirname(__file__), "config", "seed.json")

    if not os.path.exists(seed_file):
        logger.warning(f"Seed file not found | path={seed_file}")
        return

    with open(seed_file, 'r', encoding='utf-8') as f:
        seed_data = json.load(f)

    with Session(engine) as session:
        load_seed_data(session, seed_data)
    logger.info("Seed data loaded")


def initialize_database():
    """Initialize database with tables and seed data."""
    logger.info("Creating database tables")
    create_db_and_tables()
    if os.getenv("LOAD_SEED_DATA", "1") == "1":
        load_seed_file()
    logger.info("Database initialization complete")
