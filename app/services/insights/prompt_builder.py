"""
Prompt and timing text for meeting insights.
"""

from datetime import UTC, datetime

from app.models.domain.calendar_domain import MeetingEvent

SUPPORTED_LANGUAGES = ("pt", "en")

INSTRUCTIONS = {
    "pt": (
        "Baseado no seu conhecimento, veja as provas de personalidade de cada usuario e por "
        "favor crie insights sobre este evento. Como me comunicar? O que dizer e o que não "
        "dizer? Como fazer com que a comunicação seja assertiva e enriquecedora para todos "
        "os assistentes?"
    ),
    "en": (
        "Based on your knowledge, review the personality assessments of each participant and "
        "create insights about this meeting. How should I communicate? What should I say and "
        "what should I avoid? How can the conversation be assertive and valuable for everyone "
        "attending?"
    ),
}

ID_CONFIRMATION = {
    "pt": 'IMPORTANTE: Comece sua resposta com "Eu sou o assistente [SEU NOME] (ID: {assistant_id})"',
    "en": 'IMPORTANT: Start your answer with "I am the assistant [YOUR NAME] (ID: {assistant_id})"',
}


def _format_time(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def build_insight_prompt(event: MeetingEvent, assistant_id: str, language: str = "pt") -> str:
    """
    Build the assistant prompt for one meeting.

    Unknown languages fall back to Portuguese.
    """
    if language not in SUPPORTED_LANGUAGES:
        language = "pt"

    lines = [
        f"[SYSTEM NOTE: You are {assistant_id}. Always start your response by confirming your ID.]",
        "",
        "Meeting Details:",
        f"- Title: {event.title}",
        f"- Participants: {', '.join(event.guest_emails)}",
        f"- Description: {event.description}",
        f"- Start Time: {_format_time(event.start_time)}",
        f"- End Time: {_format_time(event.end_time)}",
        "",
        INSTRUCTIONS[language],
        "",
        ID_CONFIRMATION[language].format(assistant_id=assistant_id),
    ]
    return "\n".join(lines)


def time_until_message(start_time: datetime | None, labels: dict[str, str], now: datetime | None = None) -> str:
    """
    "starts in 25 minutes", "starts in 2 hours and 5 minutes" or "has started".

    Minutes are floored, so anything under a minute away counts as started.
    """
    if start_time is None:
        return labels["meeting_started"]

    now = now or datetime.now(UTC)
    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=UTC)

    minutes_until_start = int((start_time - now).total_seconds() // 60)
    if minutes_until_start <= 0:
        return labels["meeting_started"]

    if minutes_until_start < 60:
        return f"{labels['meeting_starts_in']} {minutes_until_start} {labels['minutes']}"

    hours, minutes = divmod(minutes_until_start, 60)
    hour_label = labels["hour"] if hours == 1 else labels["hours"]
    message = f"{labels['meeting_starts_in']} {hours} {hour_label}"
    if minutes > 0:
        message += f" {labels['and']} {minutes} {labels['minutes']}"
    return message
