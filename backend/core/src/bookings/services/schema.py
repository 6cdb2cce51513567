"""DynamoDB table definitions for the reconciliation service.

Shared by the table bootstrap script and the test fixtures so both create
exactly the tables and indexes the services query.
"""

from typing import Any

from bookings.services.booking_store import (
    BOOKINGS_TABLE,
    KEYS_TABLE,
    PAYMENT_SESSION_INDEX,
    SESSION_TYPE_INDEX,
)
from bookings.services.idempotency_ledger import DELIVERIES_TABLE
from bookings.utils.logging import get_logger

logger = get_logger(__name__)


def table_definitions(prefix: str) -> list[dict[str, Any]]:
    """CreateTable requests for every table, names prefixed."""
    return [
        {
            "TableName": f"{prefix}-{BOOKINGS_TABLE}",
            "KeySchema": [{"AttributeName": "booking_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "booking_id", "AttributeType": "S"},
                {"AttributeName": "session_type_id", "AttributeType": "S"},
                {"AttributeName": "payment_session_id", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": SESSION_TYPE_INDEX,
                    "KeySchema": [{"AttributeName": "session_type_id", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                },
                {
                    "IndexName": PAYMENT_SESSION_INDEX,
                    "KeySchema": [{"AttributeName": "payment_session_id", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-{KEYS_TABLE}",
            "KeySchema": [{"AttributeName": "guard_key", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "guard_key", "AttributeType": "S"}],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-{DELIVERIES_TABLE}",
            "KeySchema": [{"AttributeName": "delivery_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "delivery_id", "AttributeType": "S"}],
            "BillingMode": "PAY_PER_REQUEST",
        },
    ]


def create_tables(client: Any, prefix: str) -> list[str]:
    """Create any missing tables and wait until they are active.

    Args:
        client: boto3 DynamoDB client
        prefix: Table name prefix (DYNAMODB_TABLE_PREFIX)

    Returns:
        Names of the tables that were created
    """
    existing = set(client.list_tables().get("TableNames", []))
    created: list[str] = []
    for definition in table_definitions(prefix):
        name = definition["TableName"]
        if name in existing:
            logger.info("Table %s already exists", name)
            continue
        client.create_table(**definition)
        client.get_waiter("table_exists").wait(TableName=name)
        logger.info("Created table %s", name)
        created.append(name)
    return created
