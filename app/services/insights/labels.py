"""Built-in English UI labels used by the card builders."""

FALLBACK_LABELS: dict[str, str] = {
    "welcome_title": "Welcome to Voxerion",
    "welcome_desc": (
        "A personal assistant that helps you to better communicate with your employees "
        "helping you to become a better leader and progress in your career."
    ),
    "welcome_start": "Select a calendar event to start.",
    "meeting_starts_in": "This meeting starts in",
    "meeting_started": "This meeting has started",
    "hours": "hours",
    "hour": "hour",
    "and": "and",
    "minutes": "minutes",
    "new_event": "New meeting being created",
    "no_title": "No title provided",
    "get_insight": "Get Insights",
    "generating": "Generating meeting insights...",
    "insights_title": "Meeting Insights",
    "insights_heading": "📊 AI-Generated Insights",
    "back_to_meeting": "Back to Meeting",
    "insights_success": "Insights generated successfully!",
    "insights_error": "Error: Unable to generate insights",
    "copy_insights": "Copy Insights",
    "copy_hint": "The text has been added to a text field above. Press Ctrl+C (or Cmd+C) to copy it.",
    "done": "Done",
    "access_required": "🔒 Access Required",
    "not_registered": "The email {email} is not registered with Voxerion.",
    "contact_admin": "Please contact your administrator to get access to Voxerion.",
    "contact_support": "Contact Support",
    "visit_site": "Visit voxerion.com",
    "try_again": "Try Again",
    "logged_in_as": "Logged in as:",
    "error": "Error",
    "generic_error": "An error occurred. Please try again later.",
}


def get_labels(overrides: dict[str, str] | None = None) -> dict[str, str]:
    labels = dict(FALLBACK_LABELS)
    if overrides:
        labels.update(overrides)
    return labels
