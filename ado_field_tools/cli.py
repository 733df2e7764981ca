#!/usr/bin/env python3
"""
Command-line entry point for Azure DevOps field tooling

Commands:
    copy-fields      copy source field values into target fields
    rewrite-queries  point saved queries at the target fields
    check-mappings   report work item types missing a target field
    export-witd      export work item type definitions for editing

Run ``ado-field-tools <command> --help`` for the options of each command.
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from .auth import AzureDevOpsAuth
from .config import (
    ConfigurationError,
    load_environment,
    resolve_connection_settings,
    resolve_field_mappings,
)
from .constants import QueryLimits, Throttle, WitdDefaults
from .display import (
    always_confirm,
    configure_logging,
    console_confirm,
    log_copy_summary,
    log_rewrite_summary,
    log_witd_summary,
)
from .errors import AzureDevOpsError
from .log_sanitizer import safe_log_error
from .service_manager import ServiceManager
from .services.witd_service import RestExporter, WitadminExporter, WitdService
from .validation import ValidationError, validate_batch_size, validate_organization_url

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIGURATION = 2
EXIT_INTERRUPTED = 130


# ============================================================================
# Argument parsing
# ============================================================================

def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("connection")
    group.add_argument(
        "--org-url",
        help="Organization or collection URL (default: $AZURE_DEVOPS_ORG_URL)",
    )
    group.add_argument(
        "--project",
        help="Project name (default: $AZURE_DEVOPS_PROJECT)",
    )
    group.add_argument(
        "--token",
        help="Personal access token (default: $AZURE_DEVOPS_PAT)",
    )


def _add_mapping_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("field mappings")
    group.add_argument(
        "--config",
        help="JSON file with a list of {\"sourceField\", \"targetField\"} records",
    )
    group.add_argument("--source-field", help="Source field reference name (single mapping)")
    group.add_argument("--target-field", help="Target field reference name (single mapping)")


def _add_write_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Do not ask for confirmation before writing",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing",
    )
    parser.add_argument(
        "--pause-every",
        type=int,
        default=Throttle.PAUSE_EVERY,
        help=f"Pause after this many writes (default: {Throttle.PAUSE_EVERY}, 0 disables)",
    )
    parser.add_argument(
        "--pause-seconds",
        type=float,
        default=Throttle.PAUSE_SECONDS,
        help=f"Length of each pause in seconds (default: {Throttle.PAUSE_SECONDS})",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ado-field-tools",
        description="Copy custom field values, rewrite saved queries and export "
                    "work item type definitions in Azure DevOps.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-dir", default="logs", help="Directory for the per-run log file (default: logs)")
    parser.add_argument("--no-log-file", action="store_true", help="Log to the console only")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--env-file", help="Read environment defaults from this .env file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    copy_parser = subparsers.add_parser(
        "copy-fields",
        help="Copy source field values into target fields",
    )
    _add_connection_arguments(copy_parser)
    _add_mapping_arguments(copy_parser)
    _add_write_arguments(copy_parser)
    copy_parser.add_argument(
        "--batch-size",
        type=int,
        default=QueryLimits.BATCH_SIZE,
        help=f"Work items read per request (1-{QueryLimits.BATCH_SIZE}, default: {QueryLimits.BATCH_SIZE})",
    )
    copy_parser.add_argument(
        "--include-system-types",
        action="store_true",
        help="Also update Shared Steps, Shared Parameter, Code Review and Feedback items",
    )

    rewrite_parser = subparsers.add_parser(
        "rewrite-queries",
        help="Replace [source] field references in saved queries with [target]",
    )
    _add_connection_arguments(rewrite_parser)
    _add_mapping_arguments(rewrite_parser)
    _add_write_arguments(rewrite_parser)

    check_parser = subparsers.add_parser(
        "check-mappings",
        help="Report work item types that have a source field but not its target",
    )
    _add_connection_arguments(check_parser)
    _add_mapping_arguments(check_parser)

    witd_parser = subparsers.add_parser(
        "export-witd",
        help="Export work item type definitions that use matching custom fields",
    )
    witd_parser.add_argument("--inventory", required=True, help="Field inventory (witadmin listfields output)")
    witd_parser.add_argument(
        "--collection-url",
        help="Project collection URL (default: $AZURE_DEVOPS_ORG_URL)",
    )
    witd_parser.add_argument(
        "--field-prefix",
        default=WitdDefaults.FIELD_PREFIX,
        help=f"Reference name prefix of the fields of interest (default: {WitdDefaults.FIELD_PREFIX})",
    )
    witd_parser.add_argument("--output-dir", default="witd", help="Output directory (default: witd)")
    exporter_group = witd_parser.add_mutually_exclusive_group()
    exporter_group.add_argument("--witadmin", help="Path to witadmin.exe")
    exporter_group.add_argument("--use-rest", action="store_true", help="Export through the REST API")
    witd_parser.add_argument("--token", help="Personal access token for --use-rest (default: $AZURE_DEVOPS_PAT)")
    witd_parser.add_argument("--dry-run", action="store_true", help="Parse and plan only")

    return parser


# ============================================================================
# Commands
# ============================================================================

def _connect(args: argparse.Namespace) -> ServiceManager:
    settings = resolve_connection_settings(args.org_url, args.project, args.token)
    auth = AzureDevOpsAuth.from_settings(settings)
    auth.initialize()
    logger.info(f"Organization: {settings.organization_url}  Project: {settings.project}")
    logger.debug(f"Connection: {auth.get_auth_info()}")
    return ServiceManager(
        auth,
        default_project=settings.project,
        pause_every=getattr(args, 'pause_every', Throttle.PAUSE_EVERY),
        pause_seconds=getattr(args, 'pause_seconds', Throttle.PAUSE_SECONDS),
    )


def _confirmation(args: argparse.Namespace):
    return always_confirm if args.yes else console_confirm


def _log_mappings(mappings) -> None:
    logger.info(f"{len(mappings)} field mapping(s):")
    for mapping in mappings:
        logger.info(f"  {mapping}")


async def run_copy_fields(args: argparse.Namespace) -> int:
    mappings = resolve_field_mappings(args.config, args.source_field, args.target_field)
    batch_size = validate_batch_size(args.batch_size)
    manager = _connect(args)
    _log_mappings(mappings)

    try:
        result = await manager.get_field_copy_service().copy_fields(
            mappings,
            confirm=_confirmation(args),
            batch_size=batch_size,
            exclude_system_types=not args.include_system_types,
            dry_run=args.dry_run,
        )
    finally:
        manager.auth.close()
    log_copy_summary(result)
    return EXIT_FAILURES if result.failed or result.cancelled else EXIT_OK


async def run_rewrite_queries(args: argparse.Namespace) -> int:
    mappings = resolve_field_mappings(args.config, args.source_field, args.target_field)
    manager = _connect(args)
    _log_mappings(mappings)

    try:
        result = await manager.get_query_rewrite_service().rewrite_queries(
            mappings,
            confirm=_confirmation(args),
            dry_run=args.dry_run,
        )
    finally:
        manager.auth.close()
    log_rewrite_summary(result)
    return EXIT_FAILURES if result.failed or result.cancelled else EXIT_OK


async def run_check_mappings(args: argparse.Namespace) -> int:
    mappings = resolve_field_mappings(args.config, args.source_field, args.target_field)
    manager = _connect(args)
    _log_mappings(mappings)

    try:
        check = await manager.get_field_copy_service().check_mappings(mappings)
    finally:
        manager.auth.close()

    logger.info("=" * 60)
    logger.info("MAPPING CHECK SUMMARY")
    logger.info(f"  Work item types checked: {len(check.work_item_types)}")
    logger.info(f"  Work item types ready:   {len(check.allowed)}")
    for missing in check.missing_targets:
        logger.warning(f"  Missing target: {missing.work_item_type}: {missing.mapping}")
    unused = [m for m in mappings if m not in check.applicable_mappings]
    for mapping in unused:
        logger.info(f"  Not applicable to any type: {mapping}")
    logger.info("=" * 60)

    return EXIT_FAILURES if check.missing_targets else EXIT_OK


async def run_export_witd(args: argparse.Namespace) -> int:
    collection_url = args.collection_url or os.getenv("AZURE_DEVOPS_ORG_URL")
    if not collection_url:
        raise ConfigurationError("Missing required configuration: --collection-url (or AZURE_DEVOPS_ORG_URL)")
    collection_url = validate_organization_url(collection_url)

    exporter = None
    if not args.dry_run:
        if args.witadmin:
            exporter = WitadminExporter(args.witadmin, collection_url)
        elif args.use_rest:
            settings = resolve_connection_settings(collection_url, None, args.token, require_project=False)
            auth = AzureDevOpsAuth.from_settings(settings)
            auth.initialize()
            exporter = RestExporter(auth)
        else:
            raise ConfigurationError("export-witd needs --witadmin PATH or --use-rest (or --dry-run)")

    service = WitdService(collection_url, exporter=exporter)
    result = await service.export_definitions(
        args.inventory,
        args.output_dir,
        field_prefix=args.field_prefix,
        dry_run=args.dry_run,
    )
    log_witd_summary(result)
    if args.dry_run:
        for command in result.import_commands:
            logger.info(f"  {command}")
    return EXIT_FAILURES if result.failed else EXIT_OK


COMMANDS = {
    "copy-fields": run_copy_fields,
    "rewrite-queries": run_rewrite_queries,
    "check-mappings": run_check_mappings,
    "export-witd": run_export_witd,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_environment(args.env_file)
    configure_logging(args.log_level, None if args.no_log_file else args.log_dir)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except ValidationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION
    except AzureDevOpsError as e:
        logger.error(safe_log_error(e, f"{args.command} aborted"))
        logger.debug(f"Error details: {e.to_dict()}")
        return EXIT_FAILURES
    except KeyboardInterrupt:
        logger.warning("Interrupted by operator; writes already sent are not rolled back")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
