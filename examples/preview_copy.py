#!/usr/bin/env python
"""Preview a field copy and query rewrite without writing anything"""
import asyncio
from pathlib import Path

from ado_field_tools.auth import AzureDevOpsAuth
from ado_field_tools.config import load_environment, load_field_mappings, resolve_connection_settings
from ado_field_tools.service_manager import ServiceManager


async def main():
    # Load environment
    load_environment()
    settings = resolve_connection_settings()
    mappings = load_field_mappings(Path(__file__).parent / "mappings.json")

    print(f"🔗 Organization: {settings.organization_url}")
    print(f"📁 Project: {settings.project}\n")

    auth = AzureDevOpsAuth.from_settings(settings)
    auth.initialize()
    manager = ServiceManager(auth, default_project=settings.project)

    print("=" * 70)
    print("🧭 MAPPINGS PER WORK ITEM TYPE")
    print("=" * 70)

    check = await manager.get_field_copy_service().check_mappings(mappings)
    for work_item_type, allowed in check.allowed.items():
        print(f"\n{work_item_type}")
        for mapping in allowed:
            print(f"  ✅ {mapping}")
    for missing in check.missing_targets:
        print(f"\n⚠️  {missing.work_item_type}: missing {missing.mapping.target_field}")

    print(f"\n{'=' * 70}")
    print("📋 FIELD COPY (dry run)")
    print("=" * 70)

    copy_result = await manager.get_field_copy_service().copy_fields(mappings, dry_run=True)
    print(f"  Found: {copy_result.found}")
    print(f"  Would update: {copy_result.planned}")
    print(f"  Nothing to copy: {copy_result.skipped}")

    print(f"\n{'=' * 70}")
    print("🔎 SAVED QUERIES (dry run)")
    print("=" * 70)

    rewrite_result = await manager.get_query_rewrite_service().rewrite_queries(mappings, dry_run=True)
    print(f"  Scanned: {rewrite_result.scanned}")
    print(f"  Would rewrite: {rewrite_result.matched}")

    auth.close()


if __name__ == "__main__":
    asyncio.run(main())
