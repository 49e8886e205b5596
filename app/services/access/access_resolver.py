"""
Access resolution: email -> user -> company -> assistant.

Resolution runs on every calendar-event open, so results are cached per user
for 30 minutes. A skip-cache lookup exists for the moment right after a
permission change.
"""

from pydantic import ValidationError

from app.infrastructure.observability.logging import get_logger
from app.models.domain.access_domain import (
    AccessDetails,
    Company,
    User,
    email_domain,
    normalize_email,
)
from app.models.domain.backend_domain import Found, StrategyExhausted
from app.services.backend.entity_repository import EntityRepository, RepositoryError
from app.services.backend.http_client import TRANSIENT_ERRORS
from app.services.infrastructure.cache_store import CacheStore

logger = get_logger(__name__)

USER_CACHE_TTL = 1800  # 30 minutes


def access_cache_key(email: str) -> str:
    return f"user:{normalize_email(email)}"


class AccessResolver:
    """Resolves and caches AccessDetails. Never raises from resolve()."""

    def __init__(
        self,
        users: EntityRepository,
        companies: EntityRepository,
        cache: CacheStore,
        *,
        ttl_s: int = USER_CACHE_TTL,
        enforce_company_status: bool = True,
    ):
        self._users = users
        self._companies = companies
        self._cache = cache
        self._ttl_s = ttl_s
        self._enforce_company_status = enforce_company_status

    async def resolve(self, email: str, skip_cache: bool = False) -> AccessDetails | None:
        """
        Resolve the access bundle for an email address.

        Args:
            email: User email; compared case-insensitively
            skip_cache: Bypass the cached entry and overwrite it with a fresh lookup

        Returns:
            AccessDetails, or None when the user, their company, or an allowed
            company status is missing
        """
        email = normalize_email(email)
        if not email:
            return None

        cache_key = access_cache_key(email)

        if not skip_cache:
            cached = await self._cache.get(cache_key)
            if cached:
                try:
                    details = AccessDetails.model_validate(cached)
                except ValidationError as e:
                    logger.warning(
                        "Discarding unreadable cached access details",
                        email=email,
                        error_count=e.error_count(),
                    )
                    await self._cache.delete(cache_key)
                else:
                    logger.debug("Access details served from cache", email=email)
                    return details

        try:
            details = await self._lookup(email)
        except Exception as e:
            logger.error(
                "Unexpected error resolving access",
                email=email,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if details is None:
            # A stale grant must not outlive a fresh negative answer
            if skip_cache:
                await self._cache.delete(cache_key)
            return None

        await self._cache.set_with_ttl(cache_key, details.model_dump(mode="json"), self._ttl_s)
        logger.info(
            "Access resolved",
            email=email,
            user_id=details.user_id,
            company_id=details.company_id,
            status=details.status,
            fresh=skip_cache,
        )
        return details

    async def _lookup(self, email: str) -> AccessDetails | None:
        user_outcome = await self._users.lookup({"email": email})
        if not isinstance(user_outcome, Found):
            self._log_miss("User not found", email, user_outcome)
            return None

        user = User.from_record(user_outcome.value)
        if normalize_email(user.email) != email:
            logger.warning("Backend returned a user with a different email", email=email)
            return None

        if not user.company_id:
            logger.info("User has no company", email=email, user_id=user.id)
            return None

        company_outcome = await self._companies.lookup_by_id(user.company_id)
        if not isinstance(company_outcome, Found):
            self._log_miss("Company not found", email, company_outcome, company_id=user.company_id)
            return None

        company = Company.from_record(company_outcome.value)

        if self._enforce_company_status and not company.is_active():
            logger.info(
                "Company status blocks access",
                email=email,
                company_id=company.id,
                status=company.status,
            )
            return None

        if not company.assistant_id:
            logger.warning("Company has no assistant configured", company_id=company.id)

        return AccessDetails.compose(user, company)

    @staticmethod
    def _log_miss(message: str, email: str, outcome, **fields) -> None:
        if isinstance(outcome, StrategyExhausted):
            logger.warning(
                f"{message} (backend unavailable)",
                email=email,
                failures=[failure.describe() for failure in outcome.failures],
                **fields,
            )
        else:
            logger.info(message, email=email, **fields)

    async def invalidate(self, email: str) -> None:
        await self._cache.delete(access_cache_key(email))
        logger.info("Access cache invalidated", email=normalize_email(email))

    async def get_company_by_domain(self, domain: str) -> Company | None:
        domain = (domain or "").strip().lower()
        if not domain:
            return None
        record = await self._companies.find({"domain": domain})
        return Company.from_record(record) if record else None

    async def register_user(self, email: str, name: str | None = None) -> AccessDetails | None:
        """
        Create the user for an email whose domain belongs to a known company.

        Existing users are left untouched. Returns the fresh AccessDetails, or
        None when the domain is not registered or creation failed.
        """
        email = normalize_email(email)
        if not email:
            return None

        existing = await self._users.find({"email": email})
        if existing is None:
            company = await self.get_company_by_domain(email_domain(email))
            if company is None:
                logger.info("Company not registered for domain", email=email)
                return None

            try:
                await self._users.create(
                    {"email": email, "name": name, "company_id": company.id, "role": "user"}
                )
            except (*TRANSIENT_ERRORS, RepositoryError) as e:
                logger.error("Failed to create user", email=email, error=str(e))
                return None
            logger.info("User registered", email=email, company_id=company.id)

        await self.invalidate(email)
        return await self.resolve(email, skip_cache=True)
