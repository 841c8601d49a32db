from typing import Optional
from pydantic import BaseModel, Field

from .constants import DEFAULT_EXTERNAL_ID_PREFIX, DEFAULT_ROLE_NAME, DEFAULT_STACK_SET_NAME_PREFIX


# Centralized defaults
DEFAULT_REGION = "us-east-1"
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_STALL_THRESHOLD = 3
DEFAULT_SELF_REGISTRATION_TIMEOUT_SECONDS = 900.0


class PollingSettings(BaseModel):
    interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    # Consecutive identical polls (with accounts still pending) before STALLED
    stall_threshold: int = Field(default=DEFAULT_STALL_THRESHOLD, ge=1)


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)


class OrchestratorConfig(BaseModel):
    # Account that target roles trust (the analysis platform account)
    trusted_account_id: str
    region: str = DEFAULT_REGION
    management_role_arn: Optional[str] = None
    external_id: Optional[str] = None
    role_name: str = DEFAULT_ROLE_NAME
    stack_set_name_prefix: str = DEFAULT_STACK_SET_NAME_PREFIX
    template_url: Optional[str] = None
    template_body: Optional[str] = None
    # DynamoDB table for the account catalog; in-memory catalog when unset
    accounts_table: Optional[str] = None
    # DynamoDB table for the latest operation of each organization; in-memory when unset
    deployments_table: Optional[str] = None
    polling: PollingSettings = PollingSettings()
    throttle_retry: RetrySettings = RetrySettings()
    self_registration_timeout_seconds: float = Field(default=DEFAULT_SELF_REGISTRATION_TIMEOUT_SECONDS, gt=0)
    external_id_prefix: str = DEFAULT_EXTERNAL_ID_PREFIX

    def stack_set_name(self, organization_id: str) -> str:
        return f"{self.stack_set_name_prefix}-{organization_id}"
