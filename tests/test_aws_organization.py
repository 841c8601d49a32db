"""
Tests for orgrollout.aws.organization module.

Tests for organization detection and snapshot reconstruction.
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from typing import Any, Dict, List
from unittest.mock import MagicMock, patch

from orgrollout.aws.organization import build_snapshot, detect_organization, detect_organization_for_role
from orgrollout.enums import AccountLifecycleStatus, DetectionFailure
from orgrollout.errors import DetectionError

MGMT = "111111111111"

UNITS_BY_PARENT: Dict[str, List[Dict[str, Any]]] = {
    "r-root": [{"Id": "ou-prod", "Name": "Prod"}, {"Id": "ou-dev", "Name": "Dev"}],
    "ou-prod": [{"Id": "ou-prod-eu", "Name": "Prod-EU"}],
}
ACCOUNTS_BY_PARENT: Dict[str, List[Dict[str, Any]]] = {
    "r-root": [
        {"Id": MGMT, "Name": "Management", "Email": "mgmt@example.com", "Status": "ACTIVE"},
        {"Id": "222222222222", "Name": "Shared", "Email": "shared@example.com", "Status": "ACTIVE"},
    ],
    "ou-prod": [{"Id": "333333333333", "Name": "Prod1", "Email": "p1@example.com", "Status": "ACTIVE"}],
    "ou-prod-eu": [{"Id": "444444444444", "Name": "ProdEU", "Email": "eu@example.com", "State": "SUSPENDED"}],
    "ou-dev": [{"Id": "555555555555", "Name": "Dev1", "Email": "d1@example.com", "Status": "ACTIVE"}],
}


def _paginator(operation_name: str) -> MagicMock:
    paginator = MagicMock()

    def paginate(**kwargs: Any) -> List[Dict[str, Any]]:
        parent_id = kwargs["ParentId"]
        if operation_name == "list_organizational_units_for_parent":
            return [{"OrganizationalUnits": UNITS_BY_PARENT.get(parent_id, [])}]
        return [{"Accounts": ACCOUNTS_BY_PARENT.get(parent_id, [])}]

    paginator.paginate.side_effect = paginate
    return paginator


def _mock_session(caller_account: str = MGMT) -> MagicMock:
    org_client = MagicMock()
    org_client.describe_organization.return_value = {
        "Organization": {"Id": "o-test", "MasterAccountId": MGMT}
    }
    org_client.list_roots.return_value = {"Roots": [{"Id": "r-root", "Name": "Root"}]}
    org_client.get_paginator.side_effect = _paginator

    sts_client = MagicMock()
    sts_client.get_caller_identity.return_value = {"Account": caller_account}

    session = MagicMock()
    session.client.side_effect = lambda service, **kwargs: {"organizations": org_client, "sts": sts_client}[service]
    return session


class TestBuildSnapshot:
    """Test build_snapshot function."""

    def test_pre_order_with_listing_order_siblings(self) -> None:
        units = [
            {"Id": "r-root", "Name": "Root", "ParentId": None},
            {"Id": "ou-b", "Name": "B", "ParentId": "r-root"},
            {"Id": "ou-a", "Name": "A", "ParentId": "r-root"},
            {"Id": "ou-b-1", "Name": "B1", "ParentId": "ou-b"},
        ]
        snapshot = build_snapshot("o-test", MGMT, units, {})

        assert [unit.id for unit in snapshot.units] == ["r-root", "ou-b", "ou-b-1", "ou-a"]
        assert snapshot.units[0].child_unit_ids == ("ou-b", "ou-a")

    def test_accounts_attached_to_parent(self) -> None:
        units = [
            {"Id": "r-root", "Name": "Root", "ParentId": None},
            {"Id": "ou-a", "Name": "A", "ParentId": "r-root"},
        ]
        accounts = {"ou-a": [{"Id": "222222222222", "Name": "Member", "Email": "m@example.com", "Status": "ACTIVE"}]}
        snapshot = build_snapshot("o-test", MGMT, units, accounts)

        unit = snapshot.get_unit("ou-a")
        assert unit is not None
        assert unit.accounts[0].display_name == "Member"
        assert unit.accounts[0].lifecycle_status == AccountLifecycleStatus.ACTIVE

    def test_unknown_status_treated_as_suspended(self) -> None:
        units = [{"Id": "r-root", "Name": "Root", "ParentId": None}]
        accounts = {"r-root": [{"Id": "222222222222", "Name": "Odd", "Status": "SOMETHING_NEW"}]}
        snapshot = build_snapshot("o-test", MGMT, units, accounts)

        assert snapshot.units[0].accounts[0].lifecycle_status == AccountLifecycleStatus.SUSPENDED

    def test_requires_exactly_one_root(self) -> None:
        with pytest.raises(ValueError, match="exactly one root"):
            build_snapshot("o-test", MGMT, [], {})

    def test_orphan_units_rejected(self) -> None:
        units = [
            {"Id": "r-root", "Name": "Root", "ParentId": None},
            {"Id": "ou-orphan", "Name": "Orphan", "ParentId": "ou-missing"},
        ]
        with pytest.raises(ValueError, match="ou-orphan"):
            build_snapshot("o-test", MGMT, units, {})


class TestDetectOrganization:
    """Test detect_organization function."""

    def test_detects_full_hierarchy(self) -> None:
        snapshot = detect_organization(_mock_session())

        assert snapshot.organization_id == "o-test"
        assert snapshot.management_account_id == MGMT
        assert [unit.id for unit in snapshot.units] == ["r-root", "ou-prod", "ou-prod-eu", "ou-dev"]
        assert [account.id for account in snapshot.root_unit.accounts] == [MGMT, "222222222222"]

        eu = snapshot.get_unit("ou-prod-eu")
        assert eu is not None
        assert eu.parent_id == "ou-prod"
        assert eu.accounts[0].lifecycle_status == AccountLifecycleStatus.SUSPENDED

    def test_member_account_is_not_management(self) -> None:
        with pytest.raises(DetectionError) as exc_info:
            detect_organization(_mock_session(caller_account="222222222222"))

        assert exc_info.value.reason == DetectionFailure.NOT_AN_ORGANIZATION_MANAGEMENT_ACCOUNT

    def test_organizations_not_in_use(self) -> None:
        session = _mock_session()
        session.client("organizations").describe_organization.side_effect = ClientError(
            {"Error": {"Code": "AWSOrganizationsNotInUseException", "Message": "Not in use"}},
            "DescribeOrganization"
        )

        with pytest.raises(DetectionError) as exc_info:
            detect_organization(session)

        assert exc_info.value.reason == DetectionFailure.NOT_AN_ORGANIZATION_MANAGEMENT_ACCOUNT

    def test_access_denied(self) -> None:
        session = _mock_session()
        session.client("organizations").list_roots.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "Denied"}},
            "ListRoots"
        )

        with pytest.raises(DetectionError) as exc_info:
            detect_organization(session)

        assert exc_info.value.reason == DetectionFailure.INSUFFICIENT_PERMISSIONS

    def test_throttling_is_remote_unavailable(self) -> None:
        session = _mock_session()
        session.client("organizations").describe_organization.side_effect = ClientError(
            {"Error": {"Code": "TooManyRequestsException", "Message": "Slow down"}},
            "DescribeOrganization"
        )

        with pytest.raises(DetectionError) as exc_info:
            detect_organization(session)

        assert exc_info.value.reason == DetectionFailure.REMOTE_UNAVAILABLE

    def test_endpoint_error_is_remote_unavailable(self) -> None:
        session = _mock_session()
        session.client("organizations").describe_organization.side_effect = EndpointConnectionError(
            endpoint_url="https://organizations.us-east-1.amazonaws.com"
        )

        with pytest.raises(DetectionError) as exc_info:
            detect_organization(session)

        assert exc_info.value.reason == DetectionFailure.REMOTE_UNAVAILABLE

    def test_no_roots(self) -> None:
        session = _mock_session()
        session.client("organizations").list_roots.return_value = {"Roots": []}

        with pytest.raises(DetectionError) as exc_info:
            detect_organization(session)

        assert exc_info.value.reason == DetectionFailure.REMOTE_UNAVAILABLE


class TestDetectOrganizationForRole:
    """Test detect_organization_for_role function."""

    def test_assumes_role_with_external_id(self) -> None:
        mgmt_session = _mock_session()
        with patch("orgrollout.aws.organization.assume_role", return_value=mgmt_session) as mock_assume:
            snapshot = detect_organization_for_role(
                "arn:aws:iam::111111111111:role/OrgRolloutManagementRole",
                "eu-west-1",
                "ext-123",
            )

        mock_assume.assert_called_once_with(
            "arn:aws:iam::111111111111:role/OrgRolloutManagementRole",
            "orgrollout-org-detection",
            None,
            external_id="ext-123",
            region="eu-west-1"
        )
        assert snapshot.organization_id == "o-test"

    def test_assume_role_denied(self) -> None:
        error = ClientError({"Error": {"Code": "AccessDenied", "Message": "Not authorized"}}, "AssumeRole")
        with patch("orgrollout.aws.organization.assume_role", side_effect=error):
            with pytest.raises(DetectionError) as exc_info:
                detect_organization_for_role("arn:aws:iam::111111111111:role/R", "us-east-1", None)

        assert exc_info.value.reason == DetectionFailure.INSUFFICIENT_PERMISSIONS

    def test_sts_endpoint_unreachable(self) -> None:
        error = EndpointConnectionError(endpoint_url="https://sts.eu-west-1.amazonaws.com")
        with patch("orgrollout.aws.organization.assume_role", side_effect=error):
            with pytest.raises(DetectionError) as exc_info:
                detect_organization_for_role("arn:aws:iam::111111111111:role/R", "eu-west-1", "ext-123")

        assert exc_info.value.reason == DetectionFailure.REMOTE_UNAVAILABLE
