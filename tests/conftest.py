"""Shared fixtures: a seeded file-backed SQLite database and a TestClient."""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from webapp.database import init_db, make_engine
from webapp.models import Field, Institution, ReportedValue, ReportPeriod
from webapp.services.cache import NullCache
from webapp.services.field_tree import parse_taxonomy

INSTITUTIONS = [
    dict(id=1, cert="1001", name="Alpha Bank", stalp="CA", stname="California", city="Los Angeles",
         asset=500.0, dep=400.0, eq=50.0, bkclass="N", cb="1", fedchrtr="1", stchrtr="0",
         regagnt="OCC", specgrpn="Commercial Lending", estymd=datetime(1990, 1, 1)),
    dict(id=2, cert="1002", name="Beta Bank", stalp="CA", stname="California", city="San Diego",
         asset=None, dep=100.0, bkclass="NM", cb="1", fedchrtr="0", stchrtr="1",
         regagnt="FDIC", specgrpn="Commercial Lending", estymd=datetime(1955, 5, 20)),
    dict(id=3, cert="1003", name="Gamma Bank", stalp="CA", stname="California", city="Fresno",
         asset=900.0, dep=800.0, eq=90.0, bkclass="SM", cb="0", fedchrtr="0", stchrtr="1",
         regagnt="FED", specgrpn="Mortgage Lending", estymd=datetime(2001, 3, 9)),
    dict(id=4, cert="1004", name="Delta Savings", stalp="TX", stname="Texas", city="Austin",
         asset=300.0, dep=None, bkclass="SB", cb="1", fedchrtr="1", stchrtr="0",
         regagnt="OCC", specgrpn=None, estymd=datetime(1975, 7, 4)),
    dict(id=5, cert="1005", name="Epsilon Trust", stalp="NY", stname="New York", city="Albany",
         asset=50.0, dep=40.0, bkclass=None, cb="0", fedchrtr="0", stchrtr="1",
         regagnt="FDIC", specgrpn="Agricultural Lending", estymd=datetime(2010, 6, 15)),
]

FIELDS = [
    dict(field_id=1, field_name="ASSET", title="Total assets", description="All assets owned"),
    dict(field_id=2, field_name="LNLSNET", title="Net loans and leases", title_alt="Loans, net"),
    dict(field_id=3, field_name="LNRE", title="Real estate loans", description_alt="Secured by real estate"),
    dict(field_id=4, field_name="DEP", title="Total deposits"),
]

REPORT_PERIODS = [
    dict(report_period_id=1, report_date="2024-12-31"),
    dict(report_period_id=2, report_date="2024-09-30"),
]

REPORTED_VALUES = [
    dict(report_period_id=1, field_id=1, institution_id=1, value=500.0),
    dict(report_period_id=1, field_id=2, institution_id=1, value=320.0),
    dict(report_period_id=1, field_id=3, institution_id=1, value=150.5),
    dict(report_period_id=1, field_id=1, institution_id=3, value=900.0),
    dict(report_period_id=2, field_id=1, institution_id=3, value=850.0),
]

# MISSING has no field metadata; ASSET appears twice to exercise dedup
TEST_TAXONOMY = parse_taxonomy([
    {
        "section": "Assets, Liabilities, and Capital",
        "children": [
            {"code": "ASSET", "children": [
                {"code": "LNLSNET", "children": [
                    {"code": "LNRE", "children": []},
                ]},
                {"code": "MISSING", "children": []},
            ]},
            {"code": "DEP", "children": [
                {"code": "ASSET", "children": []},
            ]},
        ],
    },
    {"section": "Income and Expense", "children": []},
])


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    return eng


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with factory() as db:
        db.add_all(Institution(**row) for row in INSTITUTIONS)
        db.add_all(Field(**row) for row in FIELDS)
        db.add_all(ReportPeriod(**row) for row in REPORT_PERIODS)
        db.commit()
        db.add_all(ReportedValue(**row) for row in REPORTED_VALUES)
        db.commit()
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def taxonomy():
    return TEST_TAXONOMY


@pytest.fixture
def client(session_factory):
    from webapp.dependencies import get_cache, get_db, get_session_factory, get_taxonomy
    from webapp.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_cache] = lambda: NullCache()
    app.dependency_overrides[get_taxonomy] = lambda: TEST_TAXONOMY
    yield TestClient(app)
    app.dependency_overrides.clear()
