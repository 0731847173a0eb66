"""Shared pytest fixtures for the analytics engine tests."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure project root is on sys.path so 'analytics_engine' is importable.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)


EMPLOYEES = [
    {"id": "e1", "name": "Ada", "department": "Engineering", "salary": 120000,
     "status": "active", "address": {"city": "London"}},
    {"id": "e2", "name": "Grace", "department": "Engineering", "salary": 95000,
     "status": "active", "address": {"city": "New York"}},
    {"id": "e3", "name": "Linus", "department": "Sales", "salary": 85000,
     "status": "active", "address": {"city": "Helsinki"}},
    {"id": "e4", "name": "Barbara", "department": "Sales", "salary": 110000,
     "status": "inactive", "address": {"city": "Boston"}},
    {"id": "e5", "name": "Alan", "department": "Marketing", "salary": 90000,
     "status": "active", "address": {"city": "London"}},
]


@pytest.fixture(autouse=True)
def _reset_db_engine():
    """Autouse fixture: reset the global DB engine before and after every test.

    This prevents cross-test pollution when tests create their own in-memory
    databases.
    """
    from analytics_engine.database import reset_engine
    reset_engine()
    yield
    reset_engine()


@pytest.fixture()
def employees():
    """Five employee records; four active, one inactive."""
    import copy
    return copy.deepcopy(EMPLOYEES)


@pytest.fixture()
def data_source(employees):
    from analytics_engine.integrations import InMemoryDataSource
    return InMemoryDataSource({"employee": employees})


@pytest.fixture()
def engine():
    from analytics_engine.modules.aggregation import AggregationEngine
    return AggregationEngine(max_stages=20)


@pytest.fixture()
def report_manager(engine):
    from analytics_engine.modules.reporting import ReportManager
    return ReportManager(engine)


@pytest.fixture()
def dashboard_manager(engine, report_manager):
    from analytics_engine.modules.reporting import DashboardManager
    return DashboardManager(engine, report_manager)


@pytest.fixture()
def scheduler(report_manager):
    from analytics_engine.modules.scheduling import ReportScheduler
    return ReportScheduler(report_manager)


@pytest.fixture()
def salary_report_def():
    """Report definition grouping salaries of one status by department."""
    return {
        "id": "salary-by-dept",
        "name": "Salary by department",
        "objectName": "employee",
        "createdBy": "admin",
        "format": "table",
        "parameters": [
            {"name": "status", "type": "string", "required": True},
        ],
        "stages": [
            {"type": "match", "body": {"status": "$param.status"}},
            {"type": "group", "body": {
                "_id": "department",
                "totalSalary": {"$sum": "salary"},
            }},
            {"type": "sort", "body": {"totalSalary": -1}},
        ],
    }


@pytest.fixture()
def mock_notifier():
    """Return a mock notifier whose deliver() is awaitable."""
    notifier = MagicMock()
    notifier.deliver = AsyncMock(return_value=None)
    return notifier


@pytest.fixture()
def test_db():
    """Provide an in-memory SQLite database URL with all tables created."""
    from analytics_engine.database import init_db, reset_engine
    reset_engine()
    db_url = "sqlite:///:memory:"
    init_db(database_url=db_url, echo=False)
    yield db_url
