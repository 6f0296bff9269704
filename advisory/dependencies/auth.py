"""
Bearer-token authentication.

Two providers share one interface: JwtAuthProvider verifies the identity
provider's token with PyJWT, FixtureAuthProvider returns a fixed user for local
development and tests. create_app() builds exactly one and keeps it on app.state.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt  # PyJWT
from fastapi import Header, HTTPException, Request, status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    uid: str
    email: Optional[str] = None


def _extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid header format. Expected 'Bearer <token>'",
        )
    token = authorization[len("Bearer "):].strip()
    # Frontends sometimes send the literal string of an unset variable
    if not token or token.lower() in ("null", "undefined", "none"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token",
        )
    return token


class JwtAuthProvider:
    """Supports HS256 (shared secret) and ES256/RS256 (public keys from a JWKS URL)."""

    ASYMMETRIC_ALGORITHMS = ("ES256", "RS256")

    def __init__(self, secret: str = "", jwks_url: str = "", audience: str = "authenticated"):
        self.secret = secret
        self.jwks_url = jwks_url
        self.audience = audience
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

    def _decode(self, token: str) -> dict:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            logger.info("[AUTH] Failed to decode token header: %s", e)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token header",
            )
        algo = header.get("alg")

        if algo == "HS256":
            if not self.secret:
                logger.error("[AUTH] AUTH_JWT_SECRET is not set; cannot verify HS256 token")
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="Server misconfiguration: JWT secret not set",
                )
            key = self.secret
        elif algo in self.ASYMMETRIC_ALGORITHMS:
            if self._jwks_client is None:
                logger.error("[AUTH] AUTH_JWKS_URL is not set; cannot verify %s token", algo)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="Server misconfiguration: JWKS URL not set",
                )
            try:
                key = self._jwks_client.get_signing_key_from_jwt(token).key
            except jwt.PyJWKClientError as e:
                logger.error("[AUTH] Could not load signing key: %s", e)
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Authentication service temporarily unavailable. Please try again in a moment.",
                )
        else:
            logger.info("[AUTH] Unsupported algorithm: %s", algo)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Unsupported token algorithm: {algo}",
            )

        try:
            return jwt.decode(
                token,
                key,
                algorithms=[algo],
                audience=self.audience,
                options={"verify_aud": True},
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
            )
        except jwt.InvalidTokenError as e:
            logger.info("[AUTH] %s verification failed: %s", algo, e)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token signature",
            )

    def authenticate(self, authorization: Optional[str]) -> AuthenticatedUser:
        token = _extract_bearer_token(authorization)
        payload = self._decode(token)
        uid = payload.get("sub")
        if not uid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has no subject",
            )
        return AuthenticatedUser(uid=str(uid), email=payload.get("email"))


class FixtureAuthProvider:
    """
    Accepts any request as a fixed user. For local development and tests only;
    build_auth_provider refuses to create it in production.
    """

    def __init__(self, uid: str = "test-user-id", email: Optional[str] = "test@example.com"):
        self.user = AuthenticatedUser(uid=uid, email=email)

    def authenticate(self, authorization: Optional[str]) -> AuthenticatedUser:
        return self.user


def build_auth_provider(settings):
    provider = settings.AUTH_PROVIDER.strip().lower()
    if provider == "fixture":
        if settings.is_production:
            raise RuntimeError("AUTH_PROVIDER=fixture is not allowed when ENVIRONMENT=production")
        logger.warning(
            "[AUTH] Fixture authentication enabled; every request is user %s",
            settings.FIXTURE_USER_ID,
        )
        return FixtureAuthProvider(uid=settings.FIXTURE_USER_ID, email=settings.FIXTURE_USER_EMAIL)
    if provider == "jwt":
        return JwtAuthProvider(
            secret=settings.AUTH_JWT_SECRET,
            jwks_url=settings.AUTH_JWKS_URL,
            audience=settings.AUTH_JWT_AUDIENCE,
        )
    raise RuntimeError(f"Unknown AUTH_PROVIDER: {settings.AUTH_PROVIDER}")


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AuthenticatedUser:
    """FastAPI dependency returning the caller, as verified by the configured provider."""
    return request.app.state.auth_provider.authenticate(authorization)
