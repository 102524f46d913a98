"""V1 API router aggregation."""

from fastapi import APIRouter

from dancedesk.api.v1.api_tokens import router as api_tokens_router
from dancedesk.api.v1.bookings import router as bookings_router
from dancedesk.api.v1.classes import router as classes_router
from dancedesk.api.v1.export import router as export_router
from dancedesk.api.v1.identity import router as identity_router
from dancedesk.api.v1.instances import router as instances_router
from dancedesk.api.v1.maintenance import router as maintenance_router
from dancedesk.api.v1.notifications import router as notifications_router
from dancedesk.api.v1.passes import router as passes_router
from dancedesk.api.v1.payments import router as payments_router
from dancedesk.api.v1.stats import router as stats_router
from dancedesk.api.v1.subscriptions import router as subscriptions_router
from dancedesk.api.v1.system import router as system_router
from dancedesk.api.v1.tenants import router as tenants_router
from dancedesk.api.v1.users import router as users_router
from dancedesk.api.v1.webhooks import router as webhooks_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(users_router)
v1_router.include_router(api_tokens_router)
v1_router.include_router(passes_router)
v1_router.include_router(subscriptions_router)
v1_router.include_router(classes_router)
v1_router.include_router(instances_router)
v1_router.include_router(bookings_router)
v1_router.include_router(notifications_router)
v1_router.include_router(export_router)
v1_router.include_router(payments_router)
v1_router.include_router(identity_router)
v1_router.include_router(maintenance_router)
v1_router.include_router(webhooks_router)
v1_router.include_router(stats_router)
v1_router.include_router(system_router)
