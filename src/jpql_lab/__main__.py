"""
jpql_lab.__main__

Entrypoint for running the tutorial via `python -m jpql_lab`.

Responsibilities:
- Parse the command line (demo variant, persistence unit).
- Load settings and configure structlog.
- Run each selected variant as its own unit of work; exit non-zero on failure.
"""

from __future__ import annotations

import argparse
import functools
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError

from jpql_lab.demo import VARIANTS, basic_queries, run_unit_of_work
from jpql_lab.observability.logging import configure_logging, get_logger
from jpql_lab.persistence.errors import PersistenceError
from jpql_lab.persistence.factory import create_entity_manager_factory
from jpql_lab.settings import Settings, get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jpql_lab", description="Run the JPQL tutorial queries.")
    parser.add_argument(
        "variant",
        nargs="?",
        default="basic",
        choices=[*VARIANTS, "all"],
        help="which demo to run (default: basic)",
    )
    parser.add_argument("--unit", default=None, help="persistence unit name (default: settings)")
    return parser


def main(argv: Sequence[str] | None = None, *, settings: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or get_settings()
    configure_logging(service_name=settings.service_name, level=settings.log_level)
    log = get_logger(__name__)

    names = list(VARIANTS) if args.variant == "all" else [args.variant]
    try:
        with create_entity_manager_factory(args.unit, settings=settings) as emf:
            for name in names:
                work = VARIANTS[name]
                if work is basic_queries:
                    work = functools.partial(basic_queries, member_count=settings.demo_member_count)
                run_unit_of_work(emf, name, work)
    except (PersistenceError, SQLAlchemyError) as e:
        log.error("demo_failed", variant=args.variant, error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())


# --- Module Notes -----------------------------------------------------------
# The traceback of a failed unit of work is logged where it is rolled back
# (`run_unit_of_work`); here only the exit status is decided.
