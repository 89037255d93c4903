#!/usr/bin/env python3
"""
CLI tool to seed built-in frameworks or load framework definitions from JSON
Usage: python -m compliance_engine.cli.load_frameworks --organization ORG {builtin,file,list} ...
"""

import argparse
import logging
import sys
from typing import List, Optional

from ..config import get_settings
from ..database import get_engine, get_session_factory, init_database
from ..logging_config import configure_logging
from ..repositories.framework_repository import FrameworkRepository
from ..services.compliance.builtin_frameworks import (
    BUILTIN_FRAMEWORKS,
    load_framework_definitions,
    seed_builtin_frameworks,
    seed_frameworks,
)
from ..services.compliance.exceptions import ComplianceEngineError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compliance framework loader")
    parser.add_argument("--organization", "-o", required=True, help="Organization id")
    parser.add_argument("--created-by", help="User id recorded as the framework creator")
    subparsers = parser.add_subparsers(dest="command", required=True)

    builtin = subparsers.add_parser("builtin", help="Seed built-in frameworks")
    builtin.add_argument(
        "--standard",
        action="append",
        choices=sorted(BUILTIN_FRAMEWORKS),
        help="Standard to seed (default: all); repeatable",
    )

    files = subparsers.add_parser("file", help="Load framework definitions from JSON files or directories")
    files.add_argument("paths", nargs="+", help="JSON files or directories containing *.json")

    subparsers.add_parser("list", help="List the organization's frameworks")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI interface"""
    args = build_parser().parse_args(argv)

    configure_logging(get_settings())

    try:
        init_database(get_engine())
    except RuntimeError as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    with get_session_factory()() as db:
        repository = FrameworkRepository(db)
        try:
            if args.command == "builtin":
                created = seed_builtin_frameworks(
                    repository, args.organization, standard_names=args.standard, created_by=args.created_by
                )
            elif args.command == "file":
                definitions = load_framework_definitions(args.paths)
                created = seed_frameworks(repository, args.organization, definitions, created_by=args.created_by)
            else:
                frameworks = repository.list_frameworks(args.organization)
                print(f"\n=== Frameworks ({len(frameworks)}) ===")
                for framework in frameworks:
                    state = "enabled" if framework.enabled else "disabled"
                    print(f"{framework.id}  {framework.name} [{framework.framework_type.value}, {state}]")
                return 0
        except ComplianceEngineError as e:
            logger.error(f"Command failed: {e.message}")
            return 1

    print("\n=== Loading Results ===")
    print(f"Created: {len(created)}")
    for framework in created:
        print(f"  {framework.id}  {framework.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
