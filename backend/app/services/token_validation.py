"""ID and access token checks for tokens returned by the Xero identity server.

Signature verification is only performed when a signing key resolver is
supplied; the RS256 header check and the claim checks (audience, expiry,
issuer) always run.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Optional
import logging

import jwt

from ..models import LocalUserRecord
from .oauth_errors import TokenValidationError


logger = logging.getLogger(__name__)

KeyResolver = Callable[[str], Any]

DEFAULT_LEEWAY_SECONDS = 30
SIGNATURE_ALGORITHMS = ["RS256"]

ID_TOKEN_REQUIRED_CLAIMS = ["exp", "aud", "sub"]
USER_REQUIRED_CLAIMS = ("email", "xero_userid")


class JwksKeyResolver:
    """Resolve signing keys for a token from the identity server's JWKS."""

    def __init__(self, jwks_url: str) -> None:
        self._client = jwt.PyJWKClient(jwks_url)

    def __call__(self, token: str) -> Any:
        return self._client.get_signing_key_from_jwt(token).key


@lru_cache(maxsize=4)
def get_jwks_key_resolver(jwks_url: str) -> JwksKeyResolver:
    """Return one resolver per JWKS URL so the fetched key set is reused."""
    return JwksKeyResolver(jwks_url)


def _check_signed_header(token: str) -> None:
    header = jwt.get_unverified_header(token)
    alg = header.get("alg")
    if alg not in SIGNATURE_ALGORITHMS:
        raise jwt.InvalidAlgorithmError(f"unsupported alg header: {alg!r}")


def _decode_options(verify_signature: bool, verify_aud: bool) -> dict[str, Any]:
    # PyJWT disables claim checks together with the signature unless asked.
    return {
        "verify_signature": verify_signature,
        "verify_exp": True,
        "verify_nbf": True,
        "verify_iat": True,
        "verify_aud": verify_aud,
        "verify_iss": True,
    }


def validate_id_token(
    id_token: str | None,
    expected_client_id: str | None,
    *,
    issuer: str | None = None,
    key_resolver: Optional[KeyResolver] = None,
    leeway: int = DEFAULT_LEEWAY_SECONDS,
) -> bool:
    """Return True when the ID token is addressed to this client and unexpired."""
    if not id_token or not expected_client_id:
        return False
    try:
        _check_signed_header(id_token)
        key = key_resolver(id_token) if key_resolver else ""
        options = _decode_options(key_resolver is not None, verify_aud=True)
        options["require"] = list(ID_TOKEN_REQUIRED_CLAIMS)
        jwt.decode(
            id_token,
            key=key,
            algorithms=SIGNATURE_ALGORITHMS,
            audience=expected_client_id,
            issuer=issuer,
            options=options,
            leeway=leeway,
        )
    except jwt.PyJWTError as exc:
        logger.warning(
            "id_token_rejected",
            extra={"reason": type(exc).__name__, "detail": str(exc)},
        )
        return False
    return True


def validate_access_token(
    access_token: str | None,
    *,
    key_resolver: Optional[KeyResolver] = None,
    leeway: int = DEFAULT_LEEWAY_SECONDS,
) -> bool:
    """Return True when the access token is a well-formed, unexpired JWT."""
    if not access_token:
        return False
    try:
        _check_signed_header(access_token)
        key = key_resolver(access_token) if key_resolver else ""
        options = _decode_options(key_resolver is not None, verify_aud=False)
        options["require"] = ["exp"]
        jwt.decode(
            access_token,
            key=key,
            algorithms=SIGNATURE_ALGORITHMS,
            options=options,
            leeway=leeway,
        )
    except jwt.PyJWTError as exc:
        logger.warning(
            "access_token_rejected",
            extra={"reason": type(exc).__name__, "detail": str(exc)},
        )
        return False
    return True


def index_claims(token: str) -> dict[str, Any]:
    """Decode the token payload once into a claim name -> value mapping."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise TokenValidationError("id", f"unreadable token: {exc}") from exc
    if not isinstance(claims, dict):
        raise TokenValidationError("id", "token payload is not an object")
    return claims


def user_from_id_token(id_token: str) -> LocalUserRecord:
    claims = index_claims(id_token)
    missing = [name for name in USER_REQUIRED_CLAIMS if not claims.get(name)]
    if missing:
        raise TokenValidationError("id", f"missing claims: {', '.join(missing)}")
    return LocalUserRecord(
        xero_user_id=str(claims["xero_userid"]),
        email=str(claims["email"]),
        session_id=claims.get("global_session_id"),
        name=claims.get("name"),
        first_name=claims.get("given_name"),
        last_name=claims.get("family_name"),
    )
