# app/models/domain/backend_domain.py
"""
Backend Domain Models
Route map and lookup outcomes used by the backend client stack.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")

OPERATIONS = ("login", "users", "user_by_email", "companies", "company_by_domain")


@dataclass(frozen=True)
class EndpointMap:
    """Concrete backend path per logical operation; None when undiscovered."""

    login: str | None = None
    users: str | None = None
    user_by_email: str | None = None
    companies: str | None = None
    company_by_domain: str | None = None

    def get(self, operation: str) -> str | None:
        if operation not in OPERATIONS:
            raise KeyError(f"Unknown backend operation: {operation}")
        return getattr(self, operation)

    def with_path(self, operation: str, path: str | None) -> "EndpointMap":
        if operation not in OPERATIONS:
            raise KeyError(f"Unknown backend operation: {operation}")
        values = asdict(self)
        values[operation] = path
        return EndpointMap(**values)

    def needs_discovery(self) -> bool:
        """Re-discovery is due when neither users nor login is known."""
        return self.users is None and self.login is None

    def is_empty(self) -> bool:
        return all(value is None for value in asdict(self).values())

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EndpointMap":
        data = data or {}
        return cls(**{op: data.get(op) for op in OPERATIONS})


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T
    strategy: str | None = None


@dataclass(frozen=True)
class NotFound:
    strategy: str | None = None


@dataclass(frozen=True)
class StrategyFailure:
    strategy: str
    error: Exception

    def describe(self) -> str:
        return f"{self.strategy}: {type(self.error).__name__}: {self.error}"


@dataclass(frozen=True)
class StrategyExhausted:
    failures: list[StrategyFailure] = field(default_factory=list)

    @property
    def last_error(self) -> Exception | None:
        return self.failures[-1].error if self.failures else None


LookupOutcome = Found | NotFound | StrategyExhausted
