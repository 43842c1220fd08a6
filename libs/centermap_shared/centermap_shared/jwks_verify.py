from typing import Any, Dict

import jwt
from jwt import PyJWKClient

_CLIENTS: dict[str, PyJWKClient] = {}


def _client(jwks_url: str) -> PyJWKClient:
    # PyJWKClient caches the key set itself; keep one client per URL.
    client = _CLIENTS.get(jwks_url)
    if client is None:
        client = PyJWKClient(jwks_url, cache_keys=True, lifespan=300)
        _CLIENTS[jwks_url] = client
    return client


def decode_with_jwks(
    token: str,
    jwks_url: str,
    *,
    key_id: str | None = None,
    algorithm: str = "RS256",
    audience: str | None = None,
    issuer: str | None = None,
) -> Dict[str, Any]:
    """Verify a bearer token against a JWKS endpoint and return its claims.

    When ``key_id`` is given the token header must name exactly that key.
    """
    if key_id:
        header = jwt.get_unverified_header(token)
        if header.get("kid") != key_id:
            raise jwt.InvalidTokenError("unexpected key id")
    signing_key = _client(jwks_url).get_signing_key_from_jwt(token).key
    options = {"require": ["exp", "sub"], "verify_aud": audience is not None}
    return jwt.decode(
        token,
        signing_key,
        algorithms=[algorithm],
        audience=audience,
        issuer=issuer,
        options=options,
    )
