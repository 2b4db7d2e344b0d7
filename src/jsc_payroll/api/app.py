"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jsc_payroll.api.routes import (
    adjustments_router,
    health_router,
    payroll_runs_router,
    payslips_router,
)
from jsc_payroll.calculators.salary_table import ConfigurationError
from jsc_payroll.config import get_settings
from jsc_payroll.database import dispose_db, init_db
from jsc_payroll.services.adjustment_ledger import (
    AdjustmentConsistencyError,
    AdjustmentNotFoundError,
    AdjustmentStateError,
    AdjustmentValidationError,
)
from jsc_payroll.services.payroll_run_service import (
    DuplicateRunError,
    NothingToProcessError,
    PayrollRunNotFoundError,
    RunInProgressError,
)
from jsc_payroll.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    yield
    # Shutdown
    await dispose_db()


def _error(status_code: int, exc: Exception, code: str, context: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code, "context": context},
    )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DuplicateRunError)
    async def duplicate_run_handler(request: Request, exc: DuplicateRunError) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "DUPLICATE_RUN",
            {"period": exc.period, "conflicting_run_id": str(exc.conflicting_run_id)},
        )

    @app.exception_handler(RunInProgressError)
    async def run_in_progress_handler(request: Request, exc: RunInProgressError) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "RUN_IN_PROGRESS",
            {"period": exc.period, "conflicting_run_id": str(exc.conflicting_run_id)},
        )

    @app.exception_handler(NothingToProcessError)
    async def nothing_to_process_handler(
        request: Request, exc: NothingToProcessError
    ) -> JSONResponse:
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            exc,
            "NOTHING_TO_PROCESS",
            {
                "period": exc.period,
                "skipped_staff_ids": [str(s) for s in exc.skipped_staff_ids],
            },
        )

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(
        request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "INVALID_TRANSITION",
            {"from_status": exc.from_status, "to_status": exc.to_status},
        )

    @app.exception_handler(AdjustmentStateError)
    async def adjustment_state_handler(
        request: Request, exc: AdjustmentStateError
    ) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "ADJUSTMENT_STATE",
            {"from_status": exc.from_status, "action": exc.action},
        )

    @app.exception_handler(AdjustmentConsistencyError)
    async def adjustment_consistency_handler(
        request: Request, exc: AdjustmentConsistencyError
    ) -> JSONResponse:
        logger.error("Ledger inconsistency: %s", exc)
        return _error(
            status.HTTP_409_CONFLICT,
            exc,
            "ADJUSTMENT_INCONSISTENT",
            {"adjustment_id": str(exc.adjustment_id)},
        )

    @app.exception_handler(AdjustmentValidationError)
    async def adjustment_validation_handler(
        request: Request, exc: AdjustmentValidationError
    ) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, "VALIDATION_ERROR", {})

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            exc,
            "CONFIGURATION_ERROR",
            {"grade_level": exc.grade_level, "step": exc.step},
        )

    @app.exception_handler(PayrollRunNotFoundError)
    async def run_not_found_handler(
        request: Request, exc: PayrollRunNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "NOT_FOUND", {})

    @app.exception_handler(AdjustmentNotFoundError)
    async def adjustment_not_found_handler(
        request: Request, exc: AdjustmentNotFoundError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "NOT_FOUND", {})

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="JSC Payroll API",
        description="Payroll computation and run processing",
        version=settings.engine_version,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")
    app.include_router(payslips_router, prefix="/api/v1")
    app.include_router(adjustments_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
