#!/usr/bin/env python3
"""
Registry cleaner command line interface.

Runs in dry-run mode unless --apply is given. Exit status is 1 when the run
aborts, or when a live run records any per-item error; 0 otherwise.
"""

import argparse
import dataclasses
import sys
from typing import List, Optional

from registry_cleaner.config_manager import ConfigManager
from registry_cleaner.engine import CleanupEngine
from registry_cleaner.error_utils import (
    AuthenticationError,
    ConfigValidationError,
    RegistryError,
    create_config_error,
    create_registry_auth_error,
    create_registry_connection_error,
)
from registry_cleaner.http_client import HttpClient
from registry_cleaner.logging_utils import apply_log_level, get_logger, log_exception, resolve_log_level, setup_logging
from registry_cleaner.models import CleanupConfig, ProviderConfig
from registry_cleaner.providers import create_provider
from registry_cleaner.report_utils import build_report, plan_table, save_json, summary_table
from registry_cleaner.validation import cleanup_config_errors, provider_config_errors

logger = get_logger(__name__)


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.replace("\n", ",").split(",") if item.strip()]


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete container images from a registry according to a retention policy"
    )
    parser.add_argument("--config", help="Path to config YAML (defaults to CONFIG_FILE env var or config.yaml)")
    parser.add_argument("--print-config", action="store_true", help="Print the effective configuration and exit")

    registry = parser.add_argument_group("registry")
    registry.add_argument("--registry-type", choices=["ghcr", "oci", "auto"], help="Registry backend")
    registry.add_argument("--registry-url", help="Registry URL (required for oci and auto)")
    registry.add_argument("--token", help="Registry token (defaults to REGISTRY_TOKEN or GITHUB_TOKEN)")
    registry.add_argument("--username", help="Registry username")
    registry.add_argument("--password", help="Registry password (defaults to REGISTRY_PASSWORD env var)")
    registry.add_argument("--owner", help="Package owner (GHCR user or organization)")
    registry.add_argument("--owner-type", choices=["users", "orgs"], help="Whether --owner is a user or an org")
    registry.add_argument(
        "--package", action="append", dest="package_list", default=[], help="Package to clean (repeatable)"
    )
    registry.add_argument("--packages", help="Comma separated packages to clean (default: all packages)")
    registry.add_argument(
        "--expand-packages", action="store_true", default=None, help="Treat package names as glob patterns"
    )
    registry.add_argument(
        "--use-regex", action="store_true", default=None, help="Treat package patterns as regular expressions"
    )
    registry.add_argument(
        "--skip-certificate-check", action="store_true", default=None, help="Do not verify TLS certificates"
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--apply", action="store_true", help="Actually delete images (default is dry-run)")
    mode.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")
    parser.add_argument("--force", action="store_true", help="Skip confirmation prompt when using --apply")

    cleanup = parser.add_argument_group("cleanup policy")
    cleanup.add_argument("--keep-n-tagged", type=int, help="Keep the N most recent tagged images")
    cleanup.add_argument("--keep-n-untagged", type=int, help="Keep the N most recent untagged images")
    cleanup.add_argument("--delete-untagged", action="store_true", default=None, help="Delete all untagged images")
    cleanup.add_argument("--delete-tags", help="Comma separated tag globs to delete")
    cleanup.add_argument("--exclude-tags", help="Comma separated tag globs never to delete")
    cleanup.add_argument("--older-than", help='Only delete images older than this, e.g. "30d", "2w", "1m", "1y"')
    cleanup.add_argument("--delete-ghost-images", action="store_true", default=None)
    cleanup.add_argument("--delete-partial-images", action="store_true", default=None)
    cleanup.add_argument("--delete-orphaned-images", action="store_true", default=None)
    cleanup.add_argument(
        "--validate", action="store_true", default=None, help="Check multi-arch integrity after cleanup"
    )

    http = parser.add_argument_group("http")
    http.add_argument("--retry", type=int, help="Retries per request")
    http.add_argument("--throttle", type=int, help="Base delay between retries in milliseconds")
    http.add_argument("--timeout", type=float, help="Per-request timeout in seconds")

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--output", help="Write a JSON report to this path (a bare filename goes under reports.output_dir)"
    )
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace, mapping: dict) -> dict:
    """Non-None CLI values keyed by config field name"""
    values = {}
    for arg_name, field_name in mapping.items():
        value = getattr(args, arg_name)
        if value is not None:
            values[field_name] = value
    return values


def apply_provider_overrides(config: ProviderConfig, args: argparse.Namespace) -> ProviderConfig:
    overrides = _overrides(
        args,
        {
            "registry_type": "registry_type",
            "registry_url": "registry_url",
            "token": "token",
            "username": "username",
            "password": "password",
            "owner": "owner",
            "owner_type": "owner_type",
            "skip_certificate_check": "skip_certificate_check",
        },
    )
    packages = list(args.package_list) + _split(args.packages)
    if packages:
        overrides["packages"] = tuple(packages)
    return dataclasses.replace(config, **overrides)


def apply_cleanup_overrides(config: CleanupConfig, args: argparse.Namespace) -> CleanupConfig:
    overrides = _overrides(
        args,
        {
            "keep_n_tagged": "keep_n_tagged",
            "keep_n_untagged": "keep_n_untagged",
            "delete_untagged": "delete_untagged",
            "older_than": "older_than",
            "delete_ghost_images": "delete_ghost_images",
            "delete_partial_images": "delete_partial_images",
            "delete_orphaned_images": "delete_orphaned_images",
            "validate": "validate",
            "retry": "retry",
            "throttle": "throttle",
            "expand_packages": "expand_packages",
            "use_regex": "use_regex",
        },
    )
    if args.delete_tags is not None:
        overrides["delete_tags"] = tuple(_split(args.delete_tags))
    if args.exclude_tags is not None:
        overrides["exclude_tags"] = tuple(_split(args.exclude_tags))
    if args.apply:
        overrides["dry_run"] = False
    elif args.dry_run:
        overrides["dry_run"] = True
    return dataclasses.replace(config, **overrides)


def confirm_deletion() -> bool:
    """Ask for user confirmation before deleting images"""
    print("\n" + "=" * 60)
    print("⚠️  WARNING: You are about to DELETE images from the registry!")
    print("=" * 60)
    print("This action cannot be undone.")
    print("Run without --apply first to review what would be deleted.")
    print("=" * 60)

    while True:
        response = input("Are you sure you want to proceed with deletion? (yes/no): ").lower().strip()
        if response in ["yes", "y"]:
            return True
        elif response in ["no", "n"]:
            return False
        else:
            print("Please enter 'yes' or 'no'.")


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = parse_arguments(argv)
    setup_logging()

    try:
        config_manager = ConfigManager(args.config, validate=False)
        apply_log_level(resolve_log_level(args.verbose or config_manager.is_verbose()))
        provider_config = apply_provider_overrides(config_manager.get_provider_config(), args)
        cleanup_config = apply_cleanup_overrides(config_manager.get_cleanup_config(), args)
        timeout = args.timeout if args.timeout is not None else config_manager.get_timeout()
    except ConfigValidationError as e:
        print(create_config_error(str(e)).format_message())
        return 1

    errors = provider_config_errors(provider_config) + cleanup_config_errors(cleanup_config)
    if errors:
        for error in errors:
            print(create_config_error(error).format_message())
        return 1

    if args.print_config:
        config_manager.print_config()
        return 0

    dry_run = cleanup_config.dry_run
    if dry_run:
        print("🔍 DRY RUN MODE (default)")
        print("Images will NOT be deleted. Use --apply to actually delete images.")
    else:
        print("🗑️  DELETE MODE")
        print("Images WILL be deleted!")
        if args.force:
            print("⚠️  Force mode enabled - skipping confirmation prompt")
        elif config_manager.requires_confirmation() and not confirm_deletion():
            print("Deletion cancelled by user.")
            return 0

    registry_url = provider_config.registry_url or "ghcr.io"
    http_client = HttpClient(
        retry=cleanup_config.retry,
        throttle=cleanup_config.throttle,
        timeout=timeout,
        verify=not provider_config.skip_certificate_check,
    )

    try:
        provider = create_provider(provider_config, http_client)
        provider.authenticate()
        engine = CleanupEngine(provider, cleanup_config)
        result = engine.run(provider_config.packages)
    except (ValueError, ConfigValidationError) as e:
        print(create_config_error(str(e)).format_message())
        return 1
    except AuthenticationError as e:
        print(create_registry_auth_error(registry_url, e).format_message())
        return 1
    except RegistryError as e:
        log_exception(logger, "Cleanup aborted", e)
        print(create_registry_connection_error(registry_url, e).format_message())
        return 1
    except KeyboardInterrupt:
        print("\n⚠️  Cleanup interrupted by user")
        return 1

    if engine.selected:
        print(plan_table(engine.selected, engine.cascaded))
    print(summary_table(result, dry_run))
    for warning in engine.warnings:
        print(f"⚠️  {warning}")
    for error in result.errors:
        print(f"❌ {error}")

    if args.output:
        save_json(
            config_manager.resolve_report_path(args.output),
            build_report(result, dry_run, engine.selected, engine.warnings),
        )

    if result.failed(dry_run):
        print(f"\n❌ CLEANUP FINISHED WITH {len(result.errors)} ERROR(S)")
        return 1

    if dry_run:
        print("\n✅ DRY RUN COMPLETED")
        print("No images were deleted. To actually delete images, run with --apply.")
    else:
        print("\n✅ CLEANUP COMPLETED")
    return 0


if __name__ == "__main__":
    sys.exit(main())
