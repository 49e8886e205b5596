"""
Add-on API Routes
Card endpoints called by the calendar add-on shell. Every endpoint identifies
the user from the verified identity token and answers with a card; access and
insight failures are rendered as cards, never as raw errors.
"""

from fastapi import APIRouter, Depends

from app.auth.verify import current_user_email
from app.infrastructure.observability.logging import get_logger
from app.models.api.addon_request import (
    CopyRequest,
    EventContextRequest,
    InsightRequest,
    RegisterRequest,
)
from app.models.api.addon_response import AccessResponse, AddonResponse
from app.services.container import ServiceContainer, get_services
from app.services.insights import cards
from app.services.insights.insight_service import (
    EventNotFoundError,
    InsightAccessDenied,
    InsightGenerationError,
)
from app.services.insights.labels import get_labels

logger = get_logger(__name__)

router = APIRouter(prefix="/addon", tags=["addon"])

LABELS = get_labels()


def _unregistered(services: ServiceContainer, email: str) -> AddonResponse:
    return AddonResponse(
        card=cards.unregistered_user_card(
            LABELS, email, services.settings.SUPPORT_EMAIL, services.settings.PRODUCT_URL
        )
    )


@router.post("/homepage", response_model=AddonResponse)
async def homepage(
    email: str = Depends(current_user_email),
    services: ServiceContainer = Depends(get_services),
):
    """Welcome card for registered users, access-required card otherwise."""
    access = await services.access.resolve(email)
    if access is None:
        return _unregistered(services, email)
    return AddonResponse(card=cards.homepage_card(LABELS, email))


@router.post("/event-open", response_model=AddonResponse)
async def event_open(
    request: EventContextRequest,
    email: str = Depends(current_user_email),
    services: ServiceContainer = Depends(get_services),
):
    """Meeting card with the time until start and a Get Insights action."""
    access = await services.access.resolve(email)
    if access is None:
        return _unregistered(services, email)

    if not request.event_id:
        return AddonResponse(card=cards.new_event_card(LABELS))

    retry_parameters = {"event_id": request.event_id, "calendar_id": request.calendar_id}
    if not request.access_token:
        logger.warning("Event opened without calendar token", event_id=request.event_id)
        return AddonResponse(
            card=cards.error_card(LABELS, LABELS["generic_error"], cards.ACTION_EVENT_OPEN, retry_parameters)
        )

    try:
        event = await services.insights.load_event(
            request.access_token, request.event_id, request.calendar_id
        )
    except InsightGenerationError as e:
        logger.error("Failed to load event", event_id=request.event_id, error=str(e))
        return AddonResponse(
            card=cards.error_card(LABELS, str(e), cards.ACTION_EVENT_OPEN, retry_parameters)
        )

    if event is None:
        return AddonResponse(card=cards.new_event_card(LABELS))

    return AddonResponse(card=cards.meeting_card(LABELS, event))


@router.post("/insights", response_model=AddonResponse)
async def insights(
    request: InsightRequest,
    email: str = Depends(current_user_email),
    services: ServiceContainer = Depends(get_services),
):
    """Generate insights for an event, or serve them from the per-user cache."""
    retry_parameters = {"event_id": request.event_id, "calendar_id": request.calendar_id}

    try:
        result = await services.insights.generate(
            email,
            request.event_id,
            request.access_token,
            calendar_id=request.calendar_id,
            refresh=request.refresh,
        )
    except InsightAccessDenied:
        return _unregistered(services, email)
    except EventNotFoundError:
        return AddonResponse(card=cards.new_event_card(LABELS))
    except InsightGenerationError as e:
        return AddonResponse(
            card=cards.error_card(
                LABELS,
                f"Error generating insights: {e}",
                cards.ACTION_INSIGHTS,
                {**retry_parameters, "refresh": request.refresh},
            ),
            notification=LABELS["insights_error"],
        )

    return AddonResponse(
        card=cards.insights_card(
            LABELS, result.title, result.text, result.event_id, result.calendar_id
        ),
        notification=LABELS["insights_success"],
    )


@router.post("/copy", response_model=AddonResponse)
async def copy_insights(request: CopyRequest, email: str = Depends(current_user_email)):
    """Card presenting the insight text in a copyable block."""
    return AddonResponse(
        card=cards.copy_card(LABELS, request.text, request.event_id, request.calendar_id)
    )


@router.post("/access/refresh", response_model=AccessResponse)
async def refresh_access(
    email: str = Depends(current_user_email),
    services: ServiceContainer = Depends(get_services),
):
    """Re-resolve access bypassing the cache, e.g. right after a permission change."""
    access = await services.access.resolve(email, skip_cache=True)
    if access is None:
        return AccessResponse(authorized=False)
    return AccessResponse(
        authorized=True,
        company_id=access.company_id,
        role=access.role,
        status=access.status,
    )


@router.post("/register", response_model=AddonResponse)
async def register(
    request: RegisterRequest,
    email: str = Depends(current_user_email),
    services: ServiceContainer = Depends(get_services),
):
    """Self-registration for users whose email domain belongs to a registered company."""
    access = await services.access.register_user(email, name=request.name)
    if access is None:
        return _unregistered(services, email)
    return AddonResponse(card=cards.homepage_card(LABELS, email), notification="Registration complete")
