"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jsc_payroll.database import get_session_factory
from jsc_payroll.services.payroll_run_service import PayrollRunOrchestrator


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory runs use for per-staff transactions."""
    return get_session_factory()


async def get_db_session(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_orchestrator(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
) -> PayrollRunOrchestrator:
    """Get a run orchestrator using configured rates and concurrency."""
    return PayrollRunOrchestrator(factory)


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None
) -> UUID | None:
    """Extract the acting user's ID from header, used for audit attribution."""
    if not x_actor_id:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-ID format",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
ActorId = Annotated[UUID | None, Depends(get_actor_id)]
Orchestrator = Annotated[PayrollRunOrchestrator, Depends(get_orchestrator)]
