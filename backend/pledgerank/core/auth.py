"""Donor authentication from Clerk session tokens.

The Clerk ``sub`` claim is used verbatim as the donor_ref everywhere else in
the system, so nothing downstream ever sees a raw token.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from functools import lru_cache

import jwt as pyjwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from pledgerank.core.config import get_settings

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

_PUBLISHABLE_KEY_RE = re.compile(r"^pk_(?:test|live)_(?P<payload>[A-Za-z0-9+/=]+)$")

_REQUIRED_CLAIMS = ["sub", "exp", "nbf", "iat", "iss"]

_TOKEN_ERROR_MESSAGES: tuple[tuple[type[pyjwt.PyJWTError], str], ...] = (
    (pyjwt.ExpiredSignatureError, "Token expired"),
    (pyjwt.ImmatureSignatureError, "Token not yet valid (immature)"),
    (pyjwt.InvalidIssuerError, "Invalid issuer (iss mismatch)"),
    (pyjwt.InvalidAudienceError, "Unauthorized audience (aud mismatch)"),
)


@dataclass(frozen=True)
class DonorIdentity:
    """Authenticated caller. ``donor_ref`` is the Clerk user id."""

    donor_ref: str
    claims: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return (self.claims.get("public_metadata") or {}).get("admin") is True


def clerk_frontend_domain(publishable_key: str) -> str:
    """Decode the frontend API domain embedded in a Clerk publishable key.

    ``pk_test_<base64("superb-tick-45.clerk.accounts.dev$")>`` gives
    ``superb-tick-45.clerk.accounts.dev``.

    Raises:
        ValueError: If the key is malformed
    """
    match = _PUBLISHABLE_KEY_RE.match(publishable_key or "")
    if match is None:
        raise ValueError("Invalid Clerk publishable key format")

    payload = match["payload"]
    try:
        decoded = base64.b64decode(payload + "=" * (-len(payload) % 4)).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError("Invalid Clerk publishable key: cannot decode") from exc

    domain = decoded.removesuffix("$")
    if not domain:
        raise ValueError("Invalid Clerk publishable key: empty domain")
    return domain


@lru_cache
def jwks_client(domain: str) -> PyJWKClient:
    return PyJWKClient(f"https://{domain}/.well-known/jwks.json", cache_keys=True, lifespan=300)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _describe_token_error(exc: pyjwt.PyJWTError) -> str:
    if isinstance(exc, pyjwt.MissingRequiredClaimError):
        return f"Missing required claim: {exc.claim}"
    for error_type, message in _TOKEN_ERROR_MESSAGES:
        if isinstance(exc, error_type):
            return message
    return f"Invalid token: {exc}"


def verify_session_token(token: str) -> DonorIdentity:
    """Verify a Clerk session JWT and return the donor it belongs to.

    Checks signature (RS256 against the Clerk JWKS), expiry, issuer,
    authorized party (``azp`` must be an allowed origin) and, when
    configured, audience.

    Raises:
        HTTPException: 401 for any token problem, 500 if Clerk is misconfigured
    """
    settings = get_settings()
    try:
        domain = clerk_frontend_domain(settings.clerk_publishable_key)
    except ValueError as exc:
        logger.error("clerk_misconfigured", error=str(exc))
        raise HTTPException(status_code=500, detail="Authentication is misconfigured") from exc

    audiences = settings.clerk_allowed_audiences
    try:
        signing_key = jwks_client(domain).get_signing_key_from_jwt(token)
        claims = pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=f"https://{domain}",
            audience=audiences or None,
            options={"require": _REQUIRED_CLAIMS, "verify_aud": bool(audiences)},
        )
    except pyjwt.PyJWTError as exc:
        raise _unauthorized(_describe_token_error(exc)) from exc

    if not claims.get("sub"):
        raise _unauthorized("Token missing sub claim")

    azp = claims.get("azp")
    if not azp:
        raise _unauthorized("Missing azp claim")
    if azp not in settings.clerk_allowed_origins:
        raise _unauthorized("Unauthorized origin (azp mismatch)")

    return DonorIdentity(donor_ref=claims["sub"], claims=claims)


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> DonorIdentity:
    """Dependency for donor-only routes.

    Usage::

        @router.get("/mine")
        async def mine(donor: DonorIdentity = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise _unauthorized("Missing authorization header")

    donor = verify_session_token(credentials.credentials)
    # Error handlers log the donor next to the debug_id
    request.state.donor_ref = donor.donor_ref
    return donor


async def require_admin(donor: DonorIdentity = Depends(require_auth)) -> DonorIdentity:
    """Event management is restricted to Clerk users with ``public_metadata.admin``."""
    if not donor.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return donor
