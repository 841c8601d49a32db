"""
Error taxonomy for the orchestrator.

Provider errors are classified here, once, at the boundary. Everything
upstream switches on the category enums and never on message text.
"""

import re
from typing import Iterable, List, Optional

from botocore.exceptions import ClientError

from .constants import (
    ACCESS_DENIED_ERROR_CODES,
    ACCOUNT_ID_PATTERN,
    ALREADY_EXISTS_ERROR_CODES,
    REMEDIATION_HINTS,
    STACKSET_ADMINISTRATION_ROLE,
    STACKSET_EXECUTION_ROLE,
    THROTTLING_ERROR_CODES,
)
from .enums import DetectionFailure, ErrorCategory


class OrgRolloutError(Exception):
    """Base class for all orchestrator errors."""


class DetectionError(OrgRolloutError):
    """Raised when an organization snapshot cannot be produced."""

    def __init__(self, reason: DetectionFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class PlanValidationError(OrgRolloutError, ValueError):
    """Raised when plan inputs are invalid (e.g. no units selected)."""


class EmptyPlanError(OrgRolloutError):
    """Raised when a plan resolves to zero target accounts."""


class DeploymentError(OrgRolloutError):
    """
    Classified deployment submission failure.

    Attributes:
        category: Closed error category callers branch on
        detail: Provider detail, for display only
        account_ids: Accounts the error applies to (EXECUTION_ROLE_MISSING)
        proceedable_account_ids: Targets that could still be deployed to
        suggestion: Human-readable remediation hint
    """

    def __init__(
        self,
        category: ErrorCategory,
        detail: str = "",
        account_ids: Optional[List[str]] = None,
        proceedable_account_ids: Optional[List[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.category = category
        self.detail = detail
        self.account_ids = account_ids or []
        self.proceedable_account_ids = proceedable_account_ids or []
        self.suggestion = suggestion if suggestion is not None else REMEDIATION_HINTS[category]
        super().__init__(f"{category.value}: {detail}" if detail else category.value)


def classify_message(message: str, error_code: str = "") -> ErrorCategory:
    """
    Classify a provider error code and message into an ErrorCategory.

    The execution role check runs first because execution role failures
    also mention the administration role.

    Args:
        message: Provider error message or stack instance status reason
        error_code: Botocore error code, if any

    Returns:
        The matching category, UNKNOWN when nothing matches
    """
    if STACKSET_EXECUTION_ROLE in message:
        return ErrorCategory.EXECUTION_ROLE_MISSING
    if STACKSET_ADMINISTRATION_ROLE in message or "trusted access" in message.lower():
        return ErrorCategory.ADMINISTRATION_ROLE_MISSING
    if error_code in THROTTLING_ERROR_CODES or "Rate exceeded" in message:
        return ErrorCategory.THROTTLED
    if error_code in ALREADY_EXISTS_ERROR_CODES or "AlreadyExists" in message:
        return ErrorCategory.ALREADY_EXISTS
    if error_code in ACCESS_DENIED_ERROR_CODES or "AccessDenied" in message or "not authorized" in message:
        return ErrorCategory.ACCESS_DENIED
    return ErrorCategory.UNKNOWN


def extract_account_ids(message: str) -> List[str]:
    """Return the distinct 12-digit account IDs in message, in order of appearance."""
    found: List[str] = []
    for account_id in re.findall(ACCOUNT_ID_PATTERN, message):
        if account_id not in found:
            found.append(account_id)
    return found


def classify_client_error(
    error: ClientError,
    target_account_ids: Iterable[str] = ()
) -> DeploymentError:
    """
    Convert a botocore ClientError into a DeploymentError.

    For EXECUTION_ROLE_MISSING, the accounts named in the message that are
    also targets are reported as excluded and the remaining targets as
    proceedable. If no target can be identified, every target is excluded.

    Args:
        error: ClientError raised by a CloudFormation call
        target_account_ids: Accounts the failed call targeted

    Returns:
        Classified DeploymentError (not raised)
    """
    error_info = error.response.get("Error", {})
    code = error_info.get("Code", "")
    message = error_info.get("Message", "") or str(error)
    category = classify_message(message, code)

    if category != ErrorCategory.EXECUTION_ROLE_MISSING:
        return DeploymentError(category, detail=message)

    targets = sorted(set(target_account_ids))
    named = [account_id for account_id in extract_account_ids(message) if account_id in targets]
    missing = named or targets
    proceedable = [account_id for account_id in targets if account_id not in missing]
    return DeploymentError(
        category,
        detail=message,
        account_ids=missing,
        proceedable_account_ids=proceedable,
    )
