"""Rules turning a Pass into a Subscription: type, clips and end date."""

from datetime import datetime, timedelta

from dancedesk.models.dance_pass import Pass, PassType, ValidityType
from dancedesk.models.subscription import SubscriptionType
from dancedesk.services.errors import PassConfigurationError

_SUBSCRIPTION_TYPES: dict[str, SubscriptionType] = {
    PassType.SINGLE: SubscriptionType.SINGLE,
    PassType.MULTI_PASS: SubscriptionType.MULTI_PASS,
    PassType.MULTI: SubscriptionType.CLIPCARD,
    PassType.UNLIMITED: SubscriptionType.MONTHLY,
    PassType.COURSE: SubscriptionType.COURSE,
}

# Names used when a subscription lost its pass and its denormalized name.
FALLBACK_PASS_NAMES: dict[str, str] = {
    SubscriptionType.SINGLE: "Drop-in Class",
    SubscriptionType.MULTI_PASS: "Multi-Class Pass",
    SubscriptionType.CLIPCARD: "Clipcard",
    SubscriptionType.MONTHLY: "Unlimited Monthly",
    SubscriptionType.COURSE: "Course Pass",
}


def subscription_type_for(pass_type: str) -> SubscriptionType:
    try:
        return _SUBSCRIPTION_TYPES[pass_type]
    except KeyError:
        raise PassConfigurationError(f"Invalid pass type: {pass_type}") from None


def initial_clips(dance_pass: Pass) -> int | None:
    """Clips granted on purchase; None means unlimited."""
    if dance_pass.type == PassType.SINGLE:
        return 1
    if dance_pass.type == PassType.UNLIMITED:
        return None
    subscription_type_for(dance_pass.type)
    if not dance_pass.classes_limit or dance_pass.classes_limit < 1:
        raise PassConfigurationError(
            f"Pass '{dance_pass.name}' ({dance_pass.type}) has no classes limit"
        )
    return dance_pass.classes_limit


def compute_end_date(dance_pass: Pass, start: datetime) -> datetime:
    """Fixed expiry date wins for date-validity passes, else start + validity days."""
    if dance_pass.validity_type == ValidityType.DATE and dance_pass.expiry_date is not None:
        return dance_pass.expiry_date
    if dance_pass.validity_days:
        return start + timedelta(days=dance_pass.validity_days)
    raise PassConfigurationError(
        f"Pass '{dance_pass.name}' has no valid expiry configuration"
    )


def is_purchasable(dance_pass: Pass, now: datetime) -> bool:
    if not dance_pass.is_active:
        return False
    if dance_pass.validity_type == ValidityType.DATE and dance_pass.expiry_date is not None:
        return dance_pass.expiry_date > now
    return True


def validation_problems(dance_pass: Pass) -> list[str]:
    """Everything that would stop a purchase of this pass from succeeding."""
    problems: list[str] = []
    try:
        initial_clips(dance_pass)
    except PassConfigurationError as exc:
        problems.append(str(exc))
    try:
        compute_end_date(dance_pass, datetime(2000, 1, 1))
    except PassConfigurationError as exc:
        problems.append(str(exc))
    if dance_pass.validity_type == ValidityType.DATE and dance_pass.expiry_date is None:
        problems.append(f"Pass '{dance_pass.name}' uses date validity without an expiry date")
    return problems
