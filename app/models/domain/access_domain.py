# app/models/domain/access_domain.py
"""
Access Domain Models
Users, companies and the access bundle derived from them.

Backend records are not consistent about field names (`_id` vs `id`,
`company_id` vs `companyId`, `role` vs `system_role`), so each model has a
`from_record` constructor that accepts every spelling seen in the wild.
Numeric ids and labels are read as strings.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

CompanyStatus = Literal["active", "inactive", "suspended"]


def normalize_email(email: str) -> str:
    """Canonical form used for cache keys and comparisons."""
    return (email or "").strip().lower()


def email_domain(email: str) -> str:
    normalized = normalize_email(email)
    return normalized.rsplit("@", 1)[-1] if "@" in normalized else ""


def _first(record: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return default


def record_id(record: dict[str, Any]) -> str | None:
    value = _first(record, "_id", "id")
    return str(value) if value is not None else None


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class User(BaseModel):
    """A registered add-on user."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    email: str
    name: str | None = None
    company_id: str | None = None
    role: Literal["admin", "user"] = "user"
    department: str | None = None
    company_role: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "User":
        role = _first(record, "role", "system_role", default="user")
        return cls(
            id=record_id(record) or "",
            email=str(_first(record, "email", default="")),
            name=_first(record, "name", "display_name"),
            company_id=_first(record, "company_id", "companyId"),
            role="admin" if str(role).lower() == "admin" else "user",
            department=_first(record, "department"),
            company_role=_first(record, "company_role", "companyRole"),
            created_at=_parse_datetime(_first(record, "created_at", "createdAt")),
        )


class Company(BaseModel):
    """A customer company; owns exactly one assistant."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    name: str | None = None
    assistant_id: str | None = None
    status: CompanyStatus = "active"
    domains: list[str] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Company":
        domains = record.get("domains")
        if not isinstance(domains, list):
            domain = _first(record, "domain")
            domains = [domain] if domain else []

        status = str(_first(record, "status", default="active")).lower()
        if status not in ("active", "inactive", "suspended"):
            status = "inactive"

        return cls(
            id=str(_first(record, "_id", "id", "company_id", default="")),
            name=_first(record, "name"),
            assistant_id=_first(record, "assistant_id", "assistantId"),
            status=status,
            domains=[str(d).lower() for d in domains],
            created_at=_parse_datetime(_first(record, "created_at", "createdAt")),
            updated_at=_parse_datetime(_first(record, "updated_at", "updatedAt")),
        )

    def is_active(self) -> bool:
        return self.status == "active"


class AccessDetails(BaseModel):
    """Resolved authorization bundle for one user. Derived, never persisted."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    user_id: str
    company_id: str
    assistant_id: str | None
    role: str
    status: CompanyStatus

    @classmethod
    def compose(cls, user: User, company: Company) -> "AccessDetails":
        return cls(
            user_id=user.id,
            company_id=company.id,
            assistant_id=company.assistant_id,
            role=user.role,
            status=company.status,
        )
