#!/usr/bin/env python3
"""
planmatrix CLI - Feature Visibility Queries

Command-line tool for resolving which features an acting role can see on a
target role under a plan, and for managing the local plans matrix cache.

Usage:
    # Resolve features (uses cache; fetches if only the default is cached)
    planmatrix resolve --acting Parent --target self --plan Free

    # Force a network refresh first
    planmatrix resolve --acting Parent --target Child --plan Premium --refresh

    # Fetch the remote plans matrix into the cache
    planmatrix fetch

    # Print the cached plans matrix
    planmatrix show

    # Drop the cached plans matrix (falls back to the built-in default)
    planmatrix clear

    # Run the long-lived service (periodic sync + HTTP endpoints)
    planmatrix serve

Output is JSON for easy parsing by other tools.
"""

import argparse
import asyncio
import json
import sys

from planmatrix.common.config import PlanId, Role, Selection, dump_config_document
from planmatrix.common.exceptions import PlanMatrixError
from planmatrix.common.logging_setup import set_log_level
from planmatrix.common.settings import Settings, load_settings
from planmatrix.services.access.service import ResolutionService
from planmatrix.services.config.cache import ConfigCache
from planmatrix.services.config.repository import ConfigRepository
from planmatrix.services.config.service import main as serve_main
from planmatrix.services.config.sync import ConfigSync


def build_repository(settings: Settings) -> ConfigRepository:
    """Wire a repository from settings"""
    return ConfigRepository(
        sync=ConfigSync(
            config_url=settings.config_url,
            timeout=settings.request_timeout_s,
        ),
        cache=ConfigCache(settings.cache_path),
    )


async def resolve_features(
    settings: Settings,
    selection: Selection,
    refresh: bool = False,
) -> dict:
    """Resolve a selection and return a JSON-ready result"""
    repository = build_repository(settings)
    service = ResolutionService(repository)

    try:
        result = await service.request(selection, refresh=refresh)
    finally:
        await service.close()
        await repository.close()

    if not result.ok:
        return {"success": False, "error": str(result.error)}

    return {
        "success": True,
        "acting": selection.acting.value,
        "target": selection.target.value,
        "plan": selection.plan.value,
        "features": [
            {"feature": row.feature.value, "allowed": row.allowed}
            for row in result.rows
        ],
    }


async def fetch_config(settings: Settings) -> dict:
    """Fetch the remote plans matrix into the cache"""
    repository = build_repository(settings)

    try:
        document = await repository.fetch_and_persist()
        error = repository.last_error
    finally:
        await repository.close()

    return {
        "success": error is None,
        "version": document.version,
        "generated_at": document.generated_at,
        "error": str(error) if error else None,
    }


async def show_config(settings: Settings) -> dict:
    """Return the cached plans matrix"""
    repository = build_repository(settings)

    try:
        document = await repository.get()
        is_default = await repository.is_default()
    finally:
        await repository.close()

    return {
        "success": True,
        "is_default": is_default,
        "config": dump_config_document(document),
    }


async def clear_config(settings: Settings) -> dict:
    """Remove the cached plans matrix"""
    repository = build_repository(settings)

    try:
        await repository.clear()
        is_default = await repository.is_default()
    finally:
        await repository.close()

    return {"success": True, "is_default": is_default}


def _role(value: str) -> Role:
    role = Role(value)
    if role is Role.UNKNOWN:
        raise argparse.ArgumentTypeError(
            f"unknown role '{value}' (choose from {', '.join(r.value for r in Role.known())})"
        )
    return role


def _plan(value: str) -> PlanId:
    plan = PlanId(value)
    if plan is PlanId.UNKNOWN:
        raise argparse.ArgumentTypeError(
            f"unknown plan '{value}' (choose from {', '.join(p.value for p in PlanId.known())})"
        )
    return plan


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="planmatrix",
        description="Resolve feature visibility from the remote plans matrix",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to settings YAML file")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve visible features")
    resolve_parser.add_argument("--acting", type=_role, required=True, help="Acting role")
    resolve_parser.add_argument("--target", type=_role, required=True, help="Target role (or 'self')")
    resolve_parser.add_argument("--plan", type=_plan, required=True, help="Plan id")
    resolve_parser.add_argument("--refresh", action="store_true", help="Fetch from network first")

    subparsers.add_parser("fetch", help="Fetch remote plans matrix into the cache")
    subparsers.add_parser("show", help="Print the cached plans matrix")
    subparsers.add_parser("clear", help="Remove the cached plans matrix")
    subparsers.add_parser("serve", help="Run the config service")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(args.config)
        set_log_level(settings.log_level)

        if args.command == "resolve":
            selection = Selection(acting=args.acting, target=args.target, plan=args.plan)
            result = asyncio.run(resolve_features(settings, selection, refresh=args.refresh))
        elif args.command == "fetch":
            result = asyncio.run(fetch_config(settings))
        elif args.command == "show":
            result = asyncio.run(show_config(settings))
        elif args.command == "clear":
            result = asyncio.run(clear_config(settings))
        else:
            asyncio.run(serve_main(settings))
            return 0

    except PlanMatrixError as e:
        print(json.dumps({"success": False, "error": str(e)}))
        return 1

    print(json.dumps(result, indent=2))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
