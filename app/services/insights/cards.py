"""
Card builders for the add-on.

Each builder returns a renderer-agnostic Card; actions name the add-on
endpoint to call back and carry the parameters that endpoint needs.
"""

from app.models.api.addon_response import Card, CardAction
from app.models.domain.calendar_domain import MeetingEvent
from app.services.insights.prompt_builder import time_until_message

ACTION_HOMEPAGE = "/addon/homepage"
ACTION_EVENT_OPEN = "/addon/event-open"
ACTION_INSIGHTS = "/addon/insights"
ACTION_COPY = "/addon/copy"


def _event_parameters(event_id: str, calendar_id: str) -> dict[str, str]:
    return {"event_id": event_id, "calendar_id": calendar_id}


def homepage_card(labels: dict[str, str], user_email: str) -> Card:
    return Card(
        title=labels["welcome_title"],
        body_text=[
            f"{labels['logged_in_as']} {user_email}",
            labels["welcome_desc"],
            labels["welcome_start"],
        ],
    )


def unregistered_user_card(
    labels: dict[str, str], user_email: str, support_email: str, product_url: str
) -> Card:
    return Card(
        title=labels["access_required"],
        body_text=[
            labels["not_registered"].format(email=user_email),
            labels["contact_admin"],
        ],
        actions=[
            CardAction(label=labels["contact_support"], url=f"mailto:{support_email}"),
            CardAction(label=labels["visit_site"], url=product_url),
        ],
    )


def simple_card(message: str, title: str = "Voxerion") -> Card:
    return Card(title=title, body_text=[message])


def new_event_card(labels: dict[str, str]) -> Card:
    return simple_card(labels["new_event"])


def meeting_card(labels: dict[str, str], event: MeetingEvent, now=None) -> Card:
    return Card(
        title=event.title or labels["no_title"],
        body_text=[time_until_message(event.start_time, labels, now=now)],
        actions=[
            CardAction(
                label=labels["get_insight"],
                action=ACTION_INSIGHTS,
                parameters=_event_parameters(event.event_id, event.calendar_id),
            )
        ],
    )


def insights_card(labels: dict[str, str], title: str, insight_text: str, event_id: str, calendar_id: str) -> Card:
    return Card(
        title=labels["insights_title"],
        subtitle=title,
        body_text=[labels["insights_heading"], insight_text],
        actions=[
            CardAction(
                label=labels["back_to_meeting"],
                action=ACTION_EVENT_OPEN,
                parameters=_event_parameters(event_id, calendar_id),
            ),
            CardAction(
                label=labels["copy_insights"],
                action=ACTION_COPY,
                parameters={"text": insight_text, **_event_parameters(event_id, calendar_id)},
            ),
        ],
    )


def copy_card(labels: dict[str, str], text: str, event_id: str, calendar_id: str) -> Card:
    return Card(
        title=labels["copy_insights"],
        body_text=[text, labels["copy_hint"]],
        actions=[
            CardAction(
                label=labels["done"],
                action=ACTION_INSIGHTS,
                parameters=_event_parameters(event_id, calendar_id),
            )
        ],
    )


def error_card(labels: dict[str, str], message: str, retry_action: str, retry_parameters: dict | None = None) -> Card:
    """Error card whose retry button re-invokes the failed operation with the same parameters."""
    return Card(
        title=labels["error"],
        body_text=[f"⚠️ {message}"],
        actions=[
            CardAction(
                label=labels["try_again"],
                action=retry_action,
                parameters=dict(retry_parameters or {}),
            )
        ],
    )
