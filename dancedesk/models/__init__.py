"""Import all models so SQLModel.metadata picks them up."""

from dancedesk.models.api_token import ApiToken, ApiTokenCreate, ApiTokenCreated, ApiTokenRead
from dancedesk.models.booking import Booking, BookingCreate, BookingRead, BookingStatus
from dancedesk.models.checkout import Checkout, CheckoutCreate, CheckoutRead, CheckoutStatus
from dancedesk.models.class_instance import ClassInstance, ClassInstanceRead, InstanceCancel
from dancedesk.models.dance_class import (
    DanceClass,
    DanceClassCreate,
    DanceClassRead,
    DanceClassUpdate,
    WeeklySlot,
)
from dancedesk.models.dance_pass import (
    Pass,
    PassCreate,
    PassRead,
    PassType,
    PassUpdate,
    ValidityType,
)
from dancedesk.models.maintenance import (
    ConsistencyReport,
    Issue,
    IssueKind,
    RepairRequest,
    RepairResult,
)
from dancedesk.models.notification import (
    Audience,
    InboxItem,
    Notification,
    NotificationCreate,
    NotificationPriority,
    NotificationRead,
    NotificationReceipt,
    NotificationType,
    NotificationUpdate,
)
from dancedesk.models.provider_event import (
    EventProvider,
    EventStatus,
    ProviderEvent,
    ProviderEventRead,
)
from dancedesk.models.subscription import (
    PaymentProvider,
    Subscription,
    SubscriptionGrant,
    SubscriptionOrigin,
    SubscriptionRead,
    SubscriptionType,
    SubscriptionUpdate,
)
from dancedesk.models.tenant import ConnectStatus, Tenant, TenantRead, TenantStatus, TenantUpdate
from dancedesk.models.user import User, UserCreate, UserRead, UserRole, UserUpdate
from dancedesk.models.webhook import Webhook, WebhookCreate, WebhookCreated, WebhookEvent, WebhookRead

__all__ = [
    "ApiToken",
    "ApiTokenCreate",
    "ApiTokenCreated",
    "ApiTokenRead",
    "Audience",
    "Booking",
    "BookingCreate",
    "BookingRead",
    "BookingStatus",
    "Checkout",
    "CheckoutCreate",
    "CheckoutRead",
    "CheckoutStatus",
    "ClassInstance",
    "ClassInstanceRead",
    "ConsistencyReport",
    "ConnectStatus",
    "DanceClass",
    "DanceClassCreate",
    "DanceClassRead",
    "DanceClassUpdate",
    "EventProvider",
    "EventStatus",
    "InboxItem",
    "InstanceCancel",
    "Issue",
    "IssueKind",
    "Notification",
    "NotificationCreate",
    "NotificationPriority",
    "NotificationRead",
    "NotificationReceipt",
    "NotificationType",
    "NotificationUpdate",
    "Pass",
    "PassCreate",
    "PassRead",
    "PassType",
    "PassUpdate",
    "PaymentProvider",
    "ProviderEvent",
    "ProviderEventRead",
    "RepairRequest",
    "RepairResult",
    "Subscription",
    "SubscriptionGrant",
    "SubscriptionOrigin",
    "SubscriptionRead",
    "SubscriptionType",
    "SubscriptionUpdate",
    "Tenant",
    "TenantRead",
    "TenantStatus",
    "TenantUpdate",
    "User",
    "UserCreate",
    "UserRead",
    "UserRole",
    "UserUpdate",
    "ValidityType",
    "WeeklySlot",
    "Webhook",
    "WebhookCreate",
    "WebhookCreated",
    "WebhookEvent",
    "WebhookRead",
]
