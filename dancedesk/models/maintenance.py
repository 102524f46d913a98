"""Maintenance schemas: consistency issues, repair and reconciliation reports."""

import uuid
from enum import StrEnum

from sqlmodel import SQLModel


class IssueKind(StrEnum):
    SUBSCRIPTION_ORPHANED_USER = "subscription_orphaned_user"
    SUBSCRIPTION_ORPHANED_TENANT = "subscription_orphaned_tenant"
    SUBSCRIPTION_TENANT_MISMATCH = "subscription_tenant_mismatch"
    SUBSCRIPTION_PASS_NAME_MISMATCH = "subscription_pass_name_mismatch"
    SUBSCRIPTION_END_DATE_MISMATCH = "subscription_end_date_mismatch"
    SUBSCRIPTION_EXPIRED_BUT_ACTIVE = "subscription_expired_but_active"
    SUBSCRIPTION_NEGATIVE_CLIPS = "subscription_negative_clips"
    USER_WITHOUT_TENANT = "user_without_tenant"
    PASS_MISCONFIGURED = "pass_misconfigured"
    INSTANCE_DUPLICATE = "instance_duplicate"
    INSTANCE_BOOKING_COUNT_MISMATCH = "instance_booking_count_mismatch"
    TENANT_CONNECT_STATUS_MISMATCH = "tenant_connect_status_mismatch"


# Need a human decision; repair leaves them alone.
UNFIXABLE_KINDS = frozenset({IssueKind.USER_WITHOUT_TENANT, IssueKind.PASS_MISCONFIGURED})


class Issue(SQLModel):
    kind: IssueKind
    entity_id: uuid.UUID
    tenant_id: uuid.UUID | None = None
    detail: str = ""
    fixable: bool = True


class ConsistencyReport(SQLModel):
    issues: list[Issue]
    counts: dict[str, int]


class RepairRequest(SQLModel):
    kinds: list[IssueKind] | None = None  # None = every fixable kind


class RepairResult(SQLModel):
    found: int
    fixed: int
    remaining: int
