"""
Utility wrapper for storing authorization codes, sessions and client
registrations in a single DynamoDB table keyed by (pk, sk).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from oauth_bridge.core.config import StorageSettings

logger = logging.getLogger(__name__)

_CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == _CONDITIONAL_CHECK_FAILED


class DynamoDBClient:
    """CRUD operations with conditional writes for the bridge's records.

    The table is expected to have TTL enabled on the ``ttl`` attribute.
    """

    def __init__(self, settings: StorageSettings) -> None:
        self._settings = settings
        self._resource = boto3.resource("dynamodb", region_name=settings.region_name)
        self._table = self._resource.Table(settings.dynamodb_table_name)

    @staticmethod
    def _condition(expected: Optional[Mapping[str, Any]]):
        condition = Attr("pk").exists()
        for field_name, value in (expected or {}).items():
            condition = condition & Attr(field_name).eq(value)
        return condition

    def put_item(self, item: Dict[str, Any]) -> None:
        """Put an item in the DynamoDB table."""
        self._table.put_item(Item=item)

    def get_item(self, *, partition_key: str, sort_key: str) -> Optional[Dict[str, Any]]:
        """Retrieve an item using its key."""
        response = self._table.get_item(
            Key={"pk": partition_key, "sk": sort_key}, ConsistentRead=True
        )
        return response.get("Item")

    def update_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        updates: Dict[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """SET/REMOVE attributes on an existing item; False if the condition fails."""
        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        set_parts: list[str] = []
        remove_parts: list[str] = []
        for index, (field_name, value) in enumerate(updates.items()):
            placeholder = f"#u{index}"
            names[placeholder] = field_name
            if value is None:
                remove_parts.append(placeholder)
            else:
                values[f":u{index}"] = value
                set_parts.append(f"{placeholder} = :u{index}")

        expression = ""
        if set_parts:
            expression += "SET " + ", ".join(set_parts)
        if remove_parts:
            expression += " REMOVE " + ", ".join(remove_parts)

        kwargs: Dict[str, Any] = {
            "Key": {"pk": partition_key, "sk": sort_key},
            "UpdateExpression": expression.strip(),
            "ConditionExpression": self._condition(expected),
            "ExpressionAttributeNames": names,
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values

        try:
            self._table.update_item(**kwargs)
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    def delete_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Delete an item; True only when this call removed an existing item."""
        kwargs: Dict[str, Any] = {
            "Key": {"pk": partition_key, "sk": sort_key},
            "ReturnValues": "ALL_OLD",
        }
        if expected:
            kwargs["ConditionExpression"] = self._condition(expected)
        try:
            response = self._table.delete_item(**kwargs)
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return bool(response.get("Attributes"))

    def purge_expired(self, *, now_epoch: int) -> int:
        """Delete items whose ``ttl`` has passed but which TTL has not reaped yet."""
        removed = 0
        scan_kwargs: Dict[str, Any] = {
            "FilterExpression": Attr("ttl").lt(now_epoch),
            "ProjectionExpression": "pk, sk",
        }
        while True:
            response = self._table.scan(**scan_kwargs)
            for item in response.get("Items", []):
                if self.delete_item(partition_key=item["pk"], sort_key=item["sk"]):
                    removed += 1
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            scan_kwargs["ExclusiveStartKey"] = last_key
        logger.info("Purged %s expired items from %s", removed, self._settings.dynamodb_table_name)
        return removed


__all__ = ["DynamoDBClient"]
