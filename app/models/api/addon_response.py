# app/models/api/addon_response.py
"""
Add-on API response models.
Card descriptors returned to the add-on shell, which renders them.
"""

from typing import Any

from pydantic import BaseModel, Field


class CardAction(BaseModel):
    """A button on a card: either a callback into this service or an external link."""

    label: str = Field(..., description="Button text")
    action: str | None = Field(None, description="Add-on endpoint invoked on click")
    url: str | None = Field(None, description="Link opened on click")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Parameters for the action")


class Card(BaseModel):
    """Renderer-agnostic card descriptor."""

    title: str = Field(..., description="Card header title")
    subtitle: str | None = Field(None, description="Card header subtitle")
    body_text: list[str] = Field(default_factory=list, description="Text blocks in display order")
    actions: list[CardAction] = Field(default_factory=list, description="Buttons in display order")


class AddonResponse(BaseModel):
    """Response for every add-on endpoint."""

    card: Card = Field(..., description="Card to display")
    notification: str | None = Field(None, description="Toast notification text")


class AccessResponse(BaseModel):
    """Result of an access refresh."""

    authorized: bool = Field(..., description="Whether the user currently has access")
    company_id: str | None = Field(None, description="User's company ID")
    role: str | None = Field(None, description="User role")
    status: str | None = Field(None, description="Company status")
