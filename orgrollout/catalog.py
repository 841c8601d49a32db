"""
Account catalog.

One RegisteredAccount per account ID. upsert is idempotent: repeating it
is a no-op, and a later registration can only add provenance (or fill a
missing organization ID), never remove an account or change its role.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional

from boto3.session import Session
from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.client import DynamoDBClient

from .enums import RegistrationType
from .types import RegisteredAccount

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def merge_registration(existing: RegisteredAccount, incoming: RegisteredAccount) -> RegisteredAccount:
    """
    Merge a new registration of an already registered account.

    Args:
        existing: Record currently in the catalog
        incoming: New registration for the same account

    Returns:
        existing with incoming's registration type appended to its
        provenance and organization_id filled if it was missing
    """
    provenance = existing.provenance
    if incoming.registration_type not in provenance:
        provenance = provenance + (incoming.registration_type,)
    return replace(
        existing,
        provenance=provenance,
        organization_id=existing.organization_id or incoming.organization_id,
        display_name=existing.display_name or incoming.display_name,
    )


class AccountCatalog(ABC):
    """Durable store of registered accounts keyed by account ID."""

    @abstractmethod
    def upsert(self, account: RegisteredAccount) -> bool:
        """
        Insert the account, or merge it into the existing record.

        Args:
            account: Registration to apply

        Returns:
            True if the account was newly created
        """

    @abstractmethod
    def get(self, account_id: str) -> Optional[RegisteredAccount]:
        """Return the record for account_id, or None."""

    @abstractmethod
    def list_accounts(self, organization_id: Optional[str] = None) -> List[RegisteredAccount]:
        """Return all records, optionally only those of one organization, sorted by account ID."""


class InMemoryAccountCatalog(AccountCatalog):
    """Process-local catalog, safe to share between threads."""

    def __init__(self) -> None:
        self._accounts: Dict[str, RegisteredAccount] = {}
        self._lock = threading.Lock()

    def upsert(self, account: RegisteredAccount) -> bool:
        with self._lock:
            existing = self._accounts.get(account.account_id)
            if existing is None:
                self._accounts[account.account_id] = account
                return True
            self._accounts[account.account_id] = merge_registration(existing, account)
            return False

    def get(self, account_id: str) -> Optional[RegisteredAccount]:
        with self._lock:
            return self._accounts.get(account_id)

    def list_accounts(self, organization_id: Optional[str] = None) -> List[RegisteredAccount]:
        with self._lock:
            accounts = list(self._accounts.values())
        if organization_id is not None:
            accounts = [a for a in accounts if a.organization_id == organization_id]
        return sorted(accounts, key=lambda a: a.account_id)


def _to_item(account: RegisteredAccount) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "accountId": {"S": account.account_id},
        "roleArn": {"S": account.role_arn},
        "externalId": {"S": account.external_id},
        "region": {"S": account.region},
        "registrationType": {"S": account.registration_type.value},
        "provenance": {"SS": [p.value for p in account.provenance]},
    }
    if account.organization_id:
        item["organizationId"] = {"S": account.organization_id}
    if account.display_name:
        item["displayName"] = {"S": account.display_name}
    return item


def _from_item(item: Mapping[str, Any]) -> RegisteredAccount:
    registration_type = RegistrationType(item["registrationType"]["S"])
    # String sets are unordered, so the original registration type leads
    others = sorted(
        RegistrationType(p) for p in item.get("provenance", {}).get("SS", [])
        if p != registration_type.value
    )
    return RegisteredAccount(
        account_id=item["accountId"]["S"],
        role_arn=item["roleArn"]["S"],
        external_id=item["externalId"]["S"],
        region=item["region"]["S"],
        registration_type=registration_type,
        organization_id=item.get("organizationId", {}).get("S"),
        display_name=item.get("displayName", {}).get("S"),
        provenance=(registration_type, *others),
    )


class DynamoDBAccountCatalog(AccountCatalog):
    """
    Catalog backed by a DynamoDB table with partition key accountId.

    Inserts are conditional on the key not existing; a failed condition
    becomes an update that ADDs to the provenance string set, which is
    itself idempotent.
    """

    def __init__(self, table_name: str, session: Optional[Session] = None, region: Optional[str] = None) -> None:
        if session is None:
            session = Session()
        self.table_name = table_name
        self.client: DynamoDBClient = session.client("dynamodb", region_name=region)

    def upsert(self, account: RegisteredAccount) -> bool:
        try:
            self.client.put_item(
                TableName=self.table_name,
                Item=_to_item(account),
                ConditionExpression="attribute_not_exists(accountId)",
            )
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != CONDITIONAL_CHECK_FAILED:
                raise

        logger.debug(f"Account {account.account_id} already registered, adding provenance")
        update_expression = "ADD provenance :provenance"
        values: Dict[str, Any] = {":provenance": {"SS": [account.registration_type.value]}}
        if account.organization_id:
            update_expression += " SET organizationId = if_not_exists(organizationId, :organization_id)"
            values[":organization_id"] = {"S": account.organization_id}
        self.client.update_item(
            TableName=self.table_name,
            Key={"accountId": {"S": account.account_id}},
            UpdateExpression=update_expression,
            ExpressionAttributeValues=values,
        )
        return False

    def get(self, account_id: str) -> Optional[RegisteredAccount]:
        response = self.client.get_item(
            TableName=self.table_name,
            Key={"accountId": {"S": account_id}},
            ConsistentRead=True,
        )
        item = response.get("Item")
        return _from_item(item) if item else None

    def list_accounts(self, organization_id: Optional[str] = None) -> List[RegisteredAccount]:
        kwargs: Dict[str, Any] = {"TableName": self.table_name}
        if organization_id is not None:
            kwargs["FilterExpression"] = "organizationId = :organization_id"
            kwargs["ExpressionAttributeValues"] = {":organization_id": {"S": organization_id}}
        accounts = []
        paginator = self.client.get_paginator("scan")
        for page in paginator.paginate(**kwargs):
            accounts.extend(_from_item(item) for item in page.get("Items", []))
        return sorted(accounts, key=lambda a: a.account_id)
