"""
Shared fixtures: in-memory database, demo catalogue and an API client.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOAD_SEED_DATA", "0")

import json
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select

from policyhub.main import app
from policyhub.db import get_session
from policyhub.deps import get_today
from policyhub.models import (
    InsuranceCompany, InsurerApiConfig, Product, Plan, Liability, PlanLiability, Rate,
    Company, Application, ApplicationPlan, InsuredPerson, Policy
)

TODAY = date(2025, 6, 15)

FIXED_PRODUCT_ID = 1
FIXED_PLAN_ID = 1
RATED_PRODUCT_ID = 2
RATED_PLAN_ID = 2
DEATH_LIABILITY_ID = 1
MEDICAL_LIABILITY_ID = 2


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine, catalogue):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="catalogue")
def catalogue_fixture(engine):
    """
    Two products of one insurer:
    - product 1 / plan 1 priced with a fixed premium (28 monthly, 336 annual)
    - product 2 / plan 2 priced per liability
    """
    with Session(engine) as session:
        session.add(InsuranceCompany(company_id=1, company_code="PICC", company_name="Test Insurer"))
        session.add(InsurerApiConfig(
            config_id=1, company_id=1, company_code="PICC", channel_code="LEXUAN",
            intercept_rules_json=None,
        ))
        session.add(Product(product_id=FIXED_PRODUCT_ID, product_code="GEL", product_name="Employer Liability",
                            company_id=1))
        session.add(Product(product_id=RATED_PRODUCT_ID, product_code="GAC", product_name="Group Accident",
                            company_id=1))
        session.add(Plan(plan_id=FIXED_PLAN_ID, product_id=FIXED_PRODUCT_ID, plan_code="GEL-A",
                         plan_name="Plan A", duration_options=json.dumps(["1个月", "1年"])))
        session.add(Plan(plan_id=RATED_PLAN_ID, product_id=RATED_PRODUCT_ID, plan_code="GAC-A",
                         plan_name="Basic", duration_options=json.dumps(["1年"])))
        session.add(Liability(liability_id=DEATH_LIABILITY_ID, company_id=1, liability_code="DEATH",
                              liability_name="Accidental death"))
        session.add(Liability(liability_id=MEDICAL_LIABILITY_ID, company_id=1, liability_code="MED",
                              liability_name="Medical expense", is_additional=True))
        session.add(PlanLiability(id=1, plan_id=RATED_PLAN_ID, liability_id=DEATH_LIABILITY_ID,
                                  is_required=True, coverage_options=json.dumps(["10万", "20万"]),
                                  default_coverage="10万", display_order=1))
        session.add(PlanLiability(id=2, plan_id=RATED_PLAN_ID, liability_id=MEDICAL_LIABILITY_ID,
                                  coverage_options=json.dumps(["1万"]), default_coverage="1万",
                                  display_order=2))
        session.add(Rate(rate_id=1, product_id=FIXED_PRODUCT_ID, plan_id=FIXED_PLAN_ID,
                         premium_type="fixed", monthly_premium=28, annual_premium=336,
                         effective_date=date(2024, 1, 1)))
        session.add(Rate(rate_id=2, product_id=RATED_PRODUCT_ID, liability_id=DEATH_LIABILITY_ID,
                         job_class="1", coverage_amount="10万", base_rate=0.05, rate_factor=1.5,
                         effective_date=date(2024, 1, 1)))
        session.add(Rate(rate_id=3, product_id=RATED_PRODUCT_ID, liability_id=MEDICAL_LIABILITY_ID,
                         job_class="1", coverage_amount="1万", base_rate=20, rate_factor=1.0,
                         min_premium=25, max_premium=100, effective_date=date(2024, 1, 1)))
        session.commit()


@pytest.fixture(name="client")
def client_fixture(engine, catalogue):
    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_today] = lambda: TODAY
    yield TestClient(app)
    app.dependency_overrides.clear()


def set_intercept_rules(engine, rules):
    """Replace the insurer's intercept rule blob."""
    with Session(engine) as session:
        config = session.get(InsurerApiConfig, 1)
        config.intercept_rules_json = rules if isinstance(rules, str) or rules is None else json.dumps(rules)
        session.add(config)
        session.commit()


def add_existing_application(engine, product_id, id_number, status="active", policy_status=None,
                             credit_code="91110000EXISTING"):
    """Insert an application with one plan instance and one insured person."""
    with Session(engine) as session:
        company = session.exec(select(Company).where(Company.credit_code == credit_code)).first()
        if company is None:
            company = Company(company_name="Existing Co", credit_code=credit_code, province="北京市")
            session.add(company)
            session.flush()
        application = Application(
            application_no=f"APP-EXISTING-{id_number}-{status}",
            company_id=company.company_id,
            product_id=product_id,
            status=status,
            insured_count=1,
        )
        session.add(application)
        session.flush()
        session.add(ApplicationPlan(application_id=application.application_id, plan_id=FIXED_PLAN_ID,
                                    insured_count=1))
        session.add(InsuredPerson(application_id=application.application_id, name="Existing",
                                  id_number=id_number, birth_date=date(1990, 1, 1)))
        if policy_status:
            session.add(Policy(application_id=application.application_id,
                               policy_no=f"POL-{application.application_id}", status=policy_status))
        session.commit()
        return application.application_id


def count_rows(engine, model):
    with Session(engine) as session:
        return len(session.exec(select(model)).all())
