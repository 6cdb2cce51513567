"""DynamoDB service wrapper for table operations.

Conditional-check failures are reported as return values (False/None);
every other boto3 failure is wrapped into StoreError so callers can
surface it as a retryable 5xx.
"""

from functools import wraps
from typing import Any, Callable, TypeVar

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from bookings.config import get_settings
from bookings.models.errors import StoreError
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Module-level singleton for connection reuse across requests
_dynamodb_service_instance: "DynamoDBService | None" = None


def get_dynamodb_service() -> "DynamoDBService":
    """Get or create the singleton DynamoDB service instance.

    boto3 resources are expensive to build; one per process is enough.
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService()
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Reset the singleton instance (for testing only).

    This allows tests to create a fresh DynamoDBService inside
    a mock_aws context.
    """
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


def _store_errors(func: F) -> F:
    """Translate unexpected boto3 failures into StoreError."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error("DynamoDB %s failed: %s", func.__name__, code)
            raise StoreError(details={"operation": func.__name__, "aws_error": code}) from e
        except BotoCoreError as e:
            logger.error("DynamoDB %s failed: %s", func.__name__, e)
            raise StoreError(details={"operation": func.__name__}) from e

    return wrapper  # type: ignore[return-value]


class DynamoDBService:
    """Service for DynamoDB operations with environment-aware table names."""

    def __init__(self, name_prefix: str | None = None) -> None:
        """Initialize DynamoDB service.

        Args:
            name_prefix: Table name prefix. Defaults to DYNAMODB_TABLE_PREFIX.
        """
        self.name_prefix = name_prefix or get_settings().table_prefix
        self._dynamodb = boto3.resource("dynamodb")
        self._client = boto3.client("dynamodb")

    def table_name(self, table: str) -> str:
        """Get full table name with prefix."""
        return f"{self.name_prefix}-{table}"

    def _get_table(self, table: str) -> Any:
        return self._dynamodb.Table(self.table_name(table))

    @_store_errors
    def get_item(
        self,
        table: str,
        key: dict[str, Any],
        consistent: bool = True,
    ) -> dict[str, Any] | None:
        """Get a single item by key.

        Args:
            table: Table name without prefix
            key: Primary key dict
            consistent: Use a strongly consistent read

        Returns:
            Item dict or None if not found
        """
        response = self._get_table(table).get_item(Key=key, ConsistentRead=consistent)
        item: dict[str, Any] | None = response.get("Item")
        return item

    @_store_errors
    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> bool:
        """Put an item into the table.

        Returns:
            True if successful, False if condition failed
        """
        kwargs: dict[str, Any] = {"Item": item}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        if expression_attribute_values:
            kwargs["ExpressionAttributeValues"] = expression_attribute_values

        try:
            self._get_table(table).put_item(**kwargs)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            raise

    @_store_errors
    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Update an item with expressions.

        Returns:
            Updated attributes or None if condition failed
        """
        kwargs: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_attribute_names:
            kwargs["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression

        try:
            response = self._get_table(table).update_item(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return None
            raise
        attrs: dict[str, Any] | None = response.get("Attributes")
        return attrs

    @_store_errors
    def query(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        limit: int | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        """Query table or GSI.

        Returns:
            List of items
        """
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition,
            "ScanIndexForward": scan_index_forward,
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if limit:
            kwargs["Limit"] = limit

        response = self._get_table(table).query(**kwargs)
        items: list[dict[str, Any]] = response.get("Items", [])
        return items

    def query_by_gsi(
        self,
        table: str,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
    ) -> list[dict[str, Any]]:
        """Query a GSI by partition key."""
        key_condition = Key(partition_key_name).eq(partition_key_value)
        return self.query(table, key_condition, index_name=index_name)

    @_store_errors
    def transact_write(self, items: list[dict[str, Any]]) -> bool:
        """Execute transactional write for multiple items.

        Items use the resource-level shape (plain Python values); table
        names are given without prefix and expanded here.

        Returns:
            True if successful, False if the transaction was cancelled
            by a failed condition
        """
        serializer = TypeSerializer()
        request: list[dict[str, Any]] = []
        for entry in items:
            ((operation, params),) = entry.items()
            params = dict(params)
            params["TableName"] = self.table_name(params["TableName"])
            if "Item" in params:
                params["Item"] = {k: serializer.serialize(v) for k, v in params["Item"].items()}
            if "Key" in params:
                params["Key"] = {k: serializer.serialize(v) for k, v in params["Key"].items()}
            if "ExpressionAttributeValues" in params:
                params["ExpressionAttributeValues"] = {
                    k: serializer.serialize(v)
                    for k, v in params["ExpressionAttributeValues"].items()
                }
            request.append({operation: params})

        try:
            self._client.transact_write_items(TransactItems=request)  # type: ignore[arg-type]
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "TransactionCanceledException":
                return False
            raise
