#!/usr/bin/env python3
"""Create the reconciliation service's DynamoDB tables.

Creates the bookings, booking-keys and webhook-deliveries tables (with the
GSIs the booking store queries) for one environment. Existing tables are
left alone.

Usage:
    python backend/scripts/create_tables.py --env dev
    python backend/scripts/create_tables.py --env dev --region eu-west-1
    python backend/scripts/create_tables.py --prefix bookings-local --endpoint-url http://localhost:8000
"""

import argparse
import logging
import sys

import boto3

from bookings.services.schema import create_tables, table_definitions
from bookings.utils.logging import configure_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Create booking reconciliation tables")
    parser.add_argument("--env", default="dev", help="Environment name (default: dev)")
    parser.add_argument(
        "--prefix",
        help="Table name prefix (default: bookings-<env>)",
    )
    parser.add_argument("--region", help="AWS region (default: from AWS config)")
    parser.add_argument("--endpoint-url", help="DynamoDB endpoint, e.g. DynamoDB Local")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the tables that would be created and exit",
    )
    args = parser.parse_args()

    configure_logging(logging.INFO)
    prefix = args.prefix or f"bookings-{args.env}"

    if args.dry_run:
        for definition in table_definitions(prefix):
            print(definition["TableName"])
        return 0

    client_kwargs = {}
    if args.region:
        client_kwargs["region_name"] = args.region
    if args.endpoint_url:
        client_kwargs["endpoint_url"] = args.endpoint_url
    client = boto3.client("dynamodb", **client_kwargs)

    created = create_tables(client, prefix)
    print(f"Created {len(created)} table(s) with prefix '{prefix}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
