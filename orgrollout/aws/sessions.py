"""AWS session management utilities."""

import logging
from typing import Optional

from boto3.session import Session
from botocore.exceptions import ClientError
from mypy_boto3_sts.client import STSClient
from mypy_boto3_sts.type_defs import AssumeRoleResponseTypeDef, CredentialsTypeDef

from ..constants import REGISTRATION_VALIDATION_SESSION_NAME
from ..types import RegistrationEvent

logger = logging.getLogger(__name__)


def assume_role(
    role_arn: str,
    session_name: str,
    base_session: Optional[Session] = None,
    external_id: Optional[str] = None,
    region: Optional[str] = None
) -> Session:
    """
    Assume an IAM role and return a session with temporary credentials.

    Args:
        role_arn: ARN of the role to assume
        session_name: Name for the role session
        base_session: Session to use for assuming role (defaults to boto3.Session())
        external_id: External ID required by the role's trust policy, if any
        region: Region for the returned session

    Returns:
        boto3 Session with assumed role credentials

    Raises:
        ClientError: If role assumption fails (AccessDenied, InvalidParameterValue, etc.)
    """
    if base_session is None:
        base_session = Session()

    sts: STSClient = base_session.client("sts")
    if external_id:
        resp: AssumeRoleResponseTypeDef = sts.assume_role(
            RoleArn=role_arn,
            RoleSessionName=session_name,
            ExternalId=external_id
        )
    else:
        resp = sts.assume_role(
            RoleArn=role_arn,
            RoleSessionName=session_name
        )

    creds: CredentialsTypeDef = resp["Credentials"]
    return Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=region
    )


def can_assume_role(event: RegistrationEvent, base_session: Optional[Session] = None) -> bool:
    """
    Check that the role announced by a self-registering account is usable.

    Args:
        event: Registration event carrying the role ARN and external ID
        base_session: Session to assume the role from

    Returns:
        True if the role could be assumed with the event's external ID
    """
    try:
        assume_role(
            event.role_arn,
            REGISTRATION_VALIDATION_SESSION_NAME,
            base_session,
            external_id=event.external_id,
            region=event.region
        )
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        logger.warning(f"Unable to assume role {event.role_arn} for account {event.account_id}: {error_code}")
        return False
    return True
