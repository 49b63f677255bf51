"""FastAPI dependencies shared by the HTTP routers."""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request

from src.core.errors import AuthenticationError, UnauthorizedError
from src.core.rate_limiter import RateLimitTier
from src.domain.user import Identity
from src.services.engine import SyncEngine


def get_engine(request: Request) -> SyncEngine:
    return request.app.state.engine


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


async def general_rate_limit(request: Request, engine: SyncEngine = Depends(get_engine)) -> None:
    """Per-address ceiling applied to every API route."""
    await engine.rate_limiter.check(RateLimitTier.GENERAL, _client_host(request))


async def current_identity(request: Request, engine: SyncEngine = Depends(get_engine)) -> Identity:
    """Resolve the bearer token to an identity.

    Failed verifications count against the auth tier of the caller's address,
    and an exhausted tier rejects further attempts before the token is checked.

    Raises:
        RateLimitedError: If the address has too many recent failures
        AuthenticationError: If the token is missing or invalid
    """
    client_host = _client_host(request)
    await engine.rate_limiter.ensure_not_blocked(RateLimitTier.AUTH, client_host)
    try:
        return await engine.auth.verify_session(_bearer_token(request))
    except AuthenticationError:
        await engine.rate_limiter.record_failure(RateLimitTier.AUTH, client_host)
        raise


def rate_limited(tier: RateLimitTier) -> Callable[..., Awaitable[Identity]]:
    """Dependency returning the caller's identity after counting the request against ``tier``.

    Tiers are counted per client address, like the general and auth tiers.
    """

    async def _dependency(
        request: Request,
        identity: Identity = Depends(current_identity),
        engine: SyncEngine = Depends(get_engine),
    ) -> Identity:
        await engine.rate_limiter.check(tier, _client_host(request))
        return identity

    return _dependency


async def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.is_admin:
        raise UnauthorizedError("Admin access required")
    return identity
