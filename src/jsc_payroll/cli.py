"""Payroll Command Line Interface.

Provides operational tools for:
- Schema creation
- Starting a payroll run
- Approving a run
- Inspecting a run

Usage:
    python -m jsc_payroll.cli init-db
    python -m jsc_payroll.cli start-run --period 2025-01 [--department-id X]
    python -m jsc_payroll.cli approve-run --run-id X [--approver-id Y]
    python -m jsc_payroll.cli show-run --run-id X
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jsc_payroll.api.schemas import PayrollRunResponse
from jsc_payroll.calculators.types import validate_period
from jsc_payroll.config import get_settings
from jsc_payroll.database import create_all, create_session_factory, get_engine
from jsc_payroll.services.payroll_run_service import (
    DuplicateRunError,
    NothingToProcessError,
    PayrollRunNotFoundError,
    PayrollRunOrchestrator,
    PayrollRunService,
    RunInProgressError,
)
from jsc_payroll.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)

# Errors that end a command with exit code 1 and a JSON error body
FATAL_ERRORS = (
    DuplicateRunError,
    RunInProgressError,
    NothingToProcessError,
    PayrollRunNotFoundError,
    InvalidTransitionError,
)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_period(s: str) -> str:
    """Parse YYYY-MM period string."""
    try:
        return validate_period(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


class PayrollCli:
    """Payroll Command Line Interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m jsc_payroll.cli",
            description="JSC payroll operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables")

        start = subparsers.add_parser("start-run", help="Process payroll for a period")
        start.add_argument(
            "--period",
            type=parse_period,
            required=True,
            help="Period to pay (YYYY-MM)",
        )
        start.add_argument(
            "--department-id",
            type=parse_uuid,
            help="Limit the run to one department (default: all departments)",
        )
        start.add_argument(
            "--actor-id",
            type=parse_uuid,
            help="User starting the run, for the audit trail",
        )

        approve = subparsers.add_parser("approve-run", help="Approve a processed run")
        approve.add_argument("--run-id", type=parse_uuid, required=True, help="Payroll run ID")
        approve.add_argument(
            "--approver-id",
            type=parse_uuid,
            help="Approving user, for the audit trail",
        )

        show = subparsers.add_parser("show-run", help="Show a payroll run")
        show.add_argument("--run-id", type=parse_uuid, required=True, help="Payroll run ID")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        settings = get_settings()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

        # Dispatch to command handler
        handlers: dict[str, Callable[..., Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "start-run": self._cmd_start_run,
            "approve-run": self._cmd_approve_run,
            "show-run": self._cmd_show_run,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        return asyncio.run(self._run_with_engine(handler, parsed))

    async def _run_with_engine(
        self,
        handler: Callable[..., Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        engine = get_engine(args.database_url)
        factory = create_session_factory(engine)
        try:
            return await handler(args, engine, factory)
        except FATAL_ERRORS as e:
            _print_json({"error": type(e).__name__, "detail": str(e)})
            return 1
        finally:
            await engine.dispose()

    async def _cmd_init_db(self, args: argparse.Namespace, engine, factory) -> int:
        """Create all tables."""
        await create_all(engine)
        _print_json({"status": "ok"})
        return 0

    async def _cmd_start_run(
        self,
        args: argparse.Namespace,
        engine,
        factory: async_sessionmaker[AsyncSession],
    ) -> int:
        """Start and process a payroll run."""
        orchestrator = PayrollRunOrchestrator(factory)
        result = await orchestrator.start_run(args.period, args.department_id, args.actor_id)
        summary = result.to_dict()
        summary["has_exceptions"] = result.has_exceptions
        _print_json(summary)
        return 0

    async def _cmd_approve_run(
        self,
        args: argparse.Namespace,
        engine,
        factory: async_sessionmaker[AsyncSession],
    ) -> int:
        """Approve a processed run."""
        async with factory() as session:
            async with session.begin():
                payroll_run = await PayrollRunService(session).approve_run(
                    args.run_id, args.approver_id
                )
                output = PayrollRunResponse.model_validate(payroll_run).model_dump(mode="json")
        _print_json(output)
        return 0

    async def _cmd_show_run(
        self,
        args: argparse.Namespace,
        engine,
        factory: async_sessionmaker[AsyncSession],
    ) -> int:
        """Show a payroll run."""
        async with factory() as session:
            payroll_run = await PayrollRunService(session).get_run(args.run_id)
            output = PayrollRunResponse.model_validate(payroll_run).model_dump(mode="json")
        _print_json(output)
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
