"""Integration test fixtures: the HTTP API over a per-test SQLite database."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from jsc_payroll.api.app import create_app
from jsc_payroll.api.dependencies import get_db_session_factory, get_orchestrator
from jsc_payroll.services.payroll_run_service import PayrollRunOrchestrator


@pytest_asyncio.fixture
async def client(session_factory, rates) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app()
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_orchestrator] = lambda: PayrollRunOrchestrator(
        session_factory, rates=rates, concurrency=1
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
