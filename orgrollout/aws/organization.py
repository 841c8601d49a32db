"""
AWS Organizations structure detection.

This module turns a management-account session into an
OrganizationSnapshot. The hierarchy is listed flat (one call per parent)
and then rebuilt into a tree by build_snapshot, which is a pure function.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

from boto3.session import Session
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_organizations.client import OrganizationsClient
from mypy_boto3_sts.client import STSClient

from ..constants import ACCESS_DENIED_ERROR_CODES, ACCOUNT_STATUS_MAP, DETECTION_SESSION_NAME
from ..enums import AccountLifecycleStatus, DetectionFailure
from ..errors import DetectionError
from ..types import AccountRef, OrganizationalUnit, OrganizationSnapshot
from .helpers import paginated_items
from .sessions import assume_role

# Set up logging
logger = logging.getLogger(__name__)

NOT_IN_USE_ERROR_CODE = "AWSOrganizationsNotInUseException"


def _to_account_ref(account: Mapping[str, Any]) -> AccountRef:
    """
    Build an AccountRef from an Organizations account dictionary.

    Newer API responses carry "State" alongside the deprecated "Status";
    State wins when present. Unrecognised values are treated as suspended
    so the planner never targets them.
    """
    raw_status = account.get("State") or account.get("Status") or "ACTIVE"
    lifecycle = ACCOUNT_STATUS_MAP.get(raw_status)
    if lifecycle is None:
        logger.warning(f"Unrecognised status {raw_status} for account {account['Id']}, treating as suspended")
        lifecycle = AccountLifecycleStatus.SUSPENDED
    return AccountRef(
        id=account["Id"],
        display_name=account.get("Name") or account["Id"],
        email=account.get("Email", ""),
        lifecycle_status=lifecycle,
    )


def build_snapshot(
    organization_id: str,
    management_account_id: str,
    units: Sequence[Mapping[str, Optional[str]]],
    accounts_by_parent: Mapping[str, Sequence[Mapping[str, Any]]]
) -> OrganizationSnapshot:
    """
    Rebuild the unit tree from a flat listing of units and parent edges.

    Args:
        organization_id: Organization ID
        management_account_id: Management account ID
        units: Flat unit records with "Id", "Name" and "ParentId" (None for the root),
            in the order the remote API returned them
        accounts_by_parent: Account dictionaries keyed by the ID of their parent unit

    Returns:
        OrganizationSnapshot with units in pre-order, siblings in listing order

    Raises:
        ValueError: If there is not exactly one root or a unit is unreachable from it
    """
    roots = [unit for unit in units if unit.get("ParentId") is None]
    if len(roots) != 1:
        raise ValueError(f"Expected exactly one root unit, found {len(roots)}")

    children: Dict[str, List[str]] = {}
    by_id: Dict[str, Mapping[str, Optional[str]]] = {}
    for unit in units:
        unit_id = str(unit["Id"])
        by_id[unit_id] = unit
        parent_id = unit.get("ParentId")
        if parent_id is not None:
            children.setdefault(parent_id, []).append(unit_id)

    ordered: List[OrganizationalUnit] = []
    stack = [str(roots[0]["Id"])]
    while stack:
        unit_id = stack.pop()
        unit = by_id[unit_id]
        child_ids = children.get(unit_id, [])
        ordered.append(OrganizationalUnit(
            id=unit_id,
            name=str(unit.get("Name") or unit_id),
            parent_id=unit.get("ParentId"),
            accounts=tuple(_to_account_ref(acc) for acc in accounts_by_parent.get(unit_id, [])),
            child_unit_ids=tuple(child_ids),
        ))
        # Reversed so the first listed child is visited first
        stack.extend(reversed(child_ids))

    if len(ordered) != len(by_id):
        reached = {unit.id for unit in ordered}
        orphans = sorted(set(by_id) - reached)
        raise ValueError(f"Organizational units not reachable from root: {orphans}")

    return OrganizationSnapshot(
        organization_id=organization_id,
        management_account_id=management_account_id,
        units=tuple(ordered),
    )


def _list_flat_hierarchy(
    org_client: OrganizationsClient,
    root: Mapping[str, Any]
) -> tuple[List[Dict[str, Optional[str]]], Dict[str, List[Dict[str, Any]]]]:
    """
    List every unit and account breadth-first, one parent at a time.

    Args:
        org_client: AWS Organizations client
        root: Root dictionary from list_roots

    Returns:
        Tuple of (flat unit records, accounts keyed by parent ID)
    """
    units: List[Dict[str, Optional[str]]] = [
        {"Id": root["Id"], "Name": root.get("Name", "Root"), "ParentId": None}
    ]
    accounts_by_parent: Dict[str, List[Dict[str, Any]]] = {}
    queue: Deque[str] = deque([root["Id"]])

    while queue:
        parent_id = queue.popleft()
        children = paginated_items(
            org_client,  # type: ignore[arg-type]
            "list_organizational_units_for_parent",
            "OrganizationalUnits",
            ParentId=parent_id,
        )
        for ou in children:
            units.append({"Id": ou["Id"], "Name": ou.get("Name"), "ParentId": parent_id})
            queue.append(ou["Id"])
        accounts_by_parent.setdefault(parent_id, []).extend(paginated_items(
            org_client,  # type: ignore[arg-type]
            "list_accounts_for_parent",
            "Accounts",
            ParentId=parent_id,
        ))

    return units, accounts_by_parent


def _detection_error_from_client_error(e: ClientError) -> DetectionError:
    error_code = e.response.get('Error', {}).get('Code', 'Unknown')
    if error_code == NOT_IN_USE_ERROR_CODE:
        return DetectionError(
            DetectionFailure.NOT_AN_ORGANIZATION_MANAGEMENT_ACCOUNT,
            "AWS Organizations is not enabled for this account"
        )
    if error_code in ACCESS_DENIED_ERROR_CODES:
        return DetectionError(DetectionFailure.INSUFFICIENT_PERMISSIONS, str(e))
    return DetectionError(DetectionFailure.REMOTE_UNAVAILABLE, str(e))


def detect_organization(session: Session) -> OrganizationSnapshot:
    """
    Detect the organization structure visible from a management account session.

    Pure read: safe to call repeatedly and concurrently.

    Args:
        session: boto3 Session in the management account

    Returns:
        OrganizationSnapshot of the whole organization

    Raises:
        DetectionError: If the caller is not the management account, lacks
            permissions, or the Organizations API is unavailable
    """
    org_client: OrganizationsClient = session.client("organizations")
    sts_client: STSClient = session.client("sts")

    try:
        organization = org_client.describe_organization()["Organization"]
        organization_id = organization["Id"]
        management_account_id = organization["MasterAccountId"]

        caller_account_id = sts_client.get_caller_identity()["Account"]
        if caller_account_id != management_account_id:
            raise DetectionError(
                DetectionFailure.NOT_AN_ORGANIZATION_MANAGEMENT_ACCOUNT,
                f"Account {caller_account_id} is a member of {organization_id}; "
                f"the management account is {management_account_id}"
            )

        roots = org_client.list_roots().get("Roots", [])
        if not roots:
            raise DetectionError(DetectionFailure.REMOTE_UNAVAILABLE, "No roots found in organization")
        root = roots[0]
        logger.info(f"Found organization {organization_id} with root {root['Id']}")

        units, accounts_by_parent = _list_flat_hierarchy(org_client, root)
    except ClientError as e:
        raise _detection_error_from_client_error(e) from e
    except BotoCoreError as e:
        raise DetectionError(DetectionFailure.REMOTE_UNAVAILABLE, str(e)) from e

    snapshot = build_snapshot(organization_id, management_account_id, units, accounts_by_parent)
    account_count = sum(len(unit.accounts) for unit in snapshot.units)
    logger.info(f"Detected {len(snapshot.units)} units and {account_count} accounts in {organization_id}")
    return snapshot


def detect_organization_for_role(
    role_arn: str,
    region: str,
    external_id: Optional[str],
    base_session: Optional[Session] = None
) -> OrganizationSnapshot:
    """
    Assume the management account role and detect the organization.

    Args:
        role_arn: Role in the management account
        region: Region for the Organizations client
        external_id: External ID required by the role's trust policy
        base_session: Session to assume the role from

    Returns:
        OrganizationSnapshot of the whole organization

    Raises:
        DetectionError: If the role cannot be assumed or detection fails
    """
    try:
        mgmt_session = assume_role(
            role_arn,
            DETECTION_SESSION_NAME,
            base_session,
            external_id=external_id,
            region=region
        )
    except ClientError as e:
        raise _detection_error_from_client_error(e) from e
    except BotoCoreError as e:
        raise DetectionError(DetectionFailure.REMOTE_UNAVAILABLE, str(e)) from e
    return detect_organization(mgmt_session)
