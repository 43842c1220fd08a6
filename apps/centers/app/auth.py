import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from centermap_shared.jwks_verify import decode_with_jwks

from . import operators_store
from .config import settings
from .database import SessionLocal
from .errors import Forbidden, Unauthorized
from .models import Operator

logger = logging.getLogger("centers.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@dataclass
class Principal:
    subject: str
    claims: dict[str, Any] = field(default_factory=dict)
    roles: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(settings.ROLE_ADMIN)

    @property
    def can_issue_dcc(self) -> bool:
        return self.has_role(settings.ROLE_DCC)


def decode_token(token: str) -> dict[str, Any]:
    try:
        if settings.JWT_JWKS_URL:
            return decode_with_jwks(
                token,
                settings.JWT_JWKS_URL,
                key_id=settings.JWT_KEY_ID or None,
                algorithm=settings.JWT_ALGORITHM,
                audience=settings.jwt_audience,
                issuer=settings.jwt_issuer,
            )
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "sub"], "verify_aud": settings.jwt_audience is not None},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("token expired")
    except jwt.PyJWKClientError as exc:
        logger.error("jwks lookup failed: %s", exc)
        raise Unauthorized("invalid token")
    except jwt.InvalidTokenError:
        raise Unauthorized("invalid token")


def roles_from_claims(claims: dict[str, Any]) -> frozenset[str]:
    realm = claims.get("realm_access") or {}
    roles = realm.get("roles") if isinstance(realm, dict) else None
    return frozenset(r for r in (roles or []) if isinstance(r, str))


def get_principal(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Principal:
    if creds is None or not creds.credentials:
        raise Unauthorized("missing bearer token")
    claims = decode_token(creds.credentials)
    subject = claims.get("sub")
    if not subject:
        raise Unauthorized("invalid token payload")
    return Principal(subject=subject, claims=claims, roles=roles_from_claims(claims))


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise Forbidden()
    return principal


def get_or_create_operator(db: Session, principal: Principal) -> Operator:
    operator = operators_store.find_by_subject(db, principal.subject)
    if operator is None:
        claims = principal.claims
        operator = operators_store.save(db, Operator(
            subject=principal.subject,
            name=claims.get("name") or principal.subject,
            operator_number=claims.get("preferred_username"),
            email=claims.get("email"),
            bug_reports_receiver="operator",
        ))
        logger.info("created operator %s for subject %s", operator.uuid, principal.subject)
    return operator


def get_current_operator(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Operator:
    return get_or_create_operator(db, principal)
