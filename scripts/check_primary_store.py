"""Check the Cosmos DB primary store end to end.

Runs one diagram record through save, get, list, update and delete
against the configured container, then removes it again.

Usage:
    export PROCESS_SHEETS_COSMOS_ENDPOINT="https://your-account.documents.azure.com:443/"
    export PROCESS_SHEETS_COSMOS_AUTH_METHOD="default_credential"

    python scripts/check_primary_store.py --user-id alice
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from process_sheets.logging_utils import configure_structured_logging, get_sheets_logger
from process_sheets.models import Diagram, DiagramInput
from process_sheets.storage import CosmosDiagramStorage, StorageConfig, StorageError

logger = get_sheets_logger("scripts.check_primary_store")


async def check(user_id: str) -> bool:
    """Run the checks; returns True when every step passed."""
    config = StorageConfig.from_environment(user_id=user_id)
    if not config.cosmos_endpoint:
        print("PROCESS_SHEETS_COSMOS_ENDPOINT is not set")
        return False

    print(f"Connecting to: {config.cosmos_endpoint}")
    print(f"Database: {config.cosmos_database}")
    print(f"Container: {config.cosmos_container}")
    print(f"Auth method: {config.cosmos_auth_method.value}")
    print()

    storage = CosmosDiagramStorage(config)
    record = DiagramInput(name="Connectivity check").to_record()

    try:
        print("1. Saving a diagram...")
        await storage.save(record)
        print(f"   ✓ Saved {record['id']}")

        print("2. Reading it back...")
        stored = await storage.get(record["id"])
        if stored is None:
            print("   ✗ Record not found after save")
            return False
        diagram = Diagram.from_dict(stored)
        print(f"   ✓ {diagram.name}, {len(diagram.xml_content)} bytes of XML")

        print("3. Listing diagrams...")
        records = await storage.list()
        print(f"   ✓ Found {len(records)} diagram(s) for {user_id}")

        print("4. Renaming...")
        updated = await storage.update(record["id"], {"name": "Connectivity check (renamed)"})
        print(f"   ✓ Now named {updated['name'] if updated else None!r}")

        print("5. Deleting...")
        deleted = await storage.delete(record["id"])
        print(f"   ✓ Deleted: {deleted}")
        return True

    except StorageError as e:
        print(f"   ✗ {type(e).__name__}: {e}")
        return False

    finally:
        await storage.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Check the Cosmos DB diagram store")
    parser.add_argument("--user-id", default="connectivity-check", help="Owner of the test record")
    parser.add_argument("--verbose", action="store_true", help="Show storage debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.WARNING
    if args.json_logs:
        configure_structured_logging(level)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    ok = asyncio.run(check(args.user_id))
    outcome = "passed" if ok else "failed"
    logger.log(logging.INFO if ok else logging.ERROR, f"Primary store check: {outcome}")
    print()
    print("All checks passed" if ok else "Check failed")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
