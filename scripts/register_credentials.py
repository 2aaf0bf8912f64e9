#!/usr/bin/env python3
"""CLI script to register ERP credentials for a tenant.

Usage:
    python scripts/register_credentials.py --tenant acme --account-id 1234 --secret-key s3cr3t
    python scripts/register_credentials.py --tenant acme --account-id 1234 --secret-key s3cr3t --skip-test

Connects directly to the database using DATABASE_URL from environment or .env file.
Checks the credentials against the ERP first, then stores them, superseding
the tenant's active credentials.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.erp_sync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def register(
    tenant: str, account_id: str, secret_key: str, endpoint: str | None, skip_test: bool
) -> int:
    from src.erp_sync.core.database import close_db, get_session, init_db
    from src.erp_sync.core.logging import configure_structlog
    from src.erp_sync.sync.credentials import SqlCredentialStore
    from src.erp_sync.sync.schemas import Credentials

    configure_structlog()
    await init_db()

    fields = {"tenant_id": tenant, "remote_account_id": account_id, "secret_key": secret_key}
    if endpoint:
        fields["api_endpoint"] = endpoint
    credentials = Credentials(**fields)
    store = SqlCredentialStore(get_session)

    try:
        if not skip_test:
            result = await store.test(credentials)
            if not result.ok:
                print(f"Credential check failed: {result.error}")
                return 1
            print("Credential check passed")

        await store.save(tenant, credentials)
        print(f"Credentials stored for tenant {tenant} (endpoint {credentials.api_endpoint})")
        return 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Register ERP credentials for a tenant")
    parser.add_argument("--tenant", required=True, help="Tenant id (e.g., acme)")
    parser.add_argument("--account-id", required=True, help="ERP company/account id")
    parser.add_argument("--secret-key", required=True, help="ERP API secret key")
    parser.add_argument("--endpoint", default=None, help="ERP API endpoint override")
    parser.add_argument(
        "--skip-test", action="store_true", help="Store without checking against the ERP"
    )
    args = parser.parse_args()

    sys.exit(
        asyncio.run(
            register(args.tenant, args.account_id, args.secret_key, args.endpoint, args.skip_test)
        )
    )


if __name__ == "__main__":
    main()
