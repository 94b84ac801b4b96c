"""
Bearer token authentication for the FastAPI API.

Tokens are Firebase ID tokens. They are verified locally with PyJWT against
Google's published signing keys; no session state is kept, so every request
is verified on its own.
"""

from typing import Optional, Protocol

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from jwt.exceptions import PyJWKClientConnectionError, PyJWKClientError

from travel_ease.models import AuthenticatedUser

logger = structlog.get_logger(__name__)

# auto_error=False so a missing header yields 401 instead of FastAPI's 403
security = HTTPBearer(auto_error=False)


class InvalidTokenError(Exception):
    """Raised when a bearer token is rejected by the identity provider."""


class IdentityProviderUnavailable(Exception):
    """Raised when the identity provider's signing keys cannot be fetched."""


class TokenVerifier(Protocol):
    def verify(self, token: str) -> AuthenticatedUser:
        ...


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens issued for a single project."""

    ALGORITHMS = ["RS256"]

    def __init__(self, project_id: str, jwks_url: str, leeway: int = 60):
        """
        Initialize the verifier.

        Args:
            project_id: Firebase project id (token audience)
            jwks_url: URL of the signing key set
            leeway: Clock skew tolerance in seconds
        """
        self.project_id = project_id
        self.issuer = f"https://securetoken.google.com/{project_id}"
        self.leeway = leeway
        self._jwk_client = PyJWKClient(jwks_url)

    def verify(self, token: str) -> AuthenticatedUser:
        """
        Verify a token and decode its identity claims.

        Args:
            token: Raw bearer token

        Returns:
            AuthenticatedUser built from the token claims

        Raises:
            InvalidTokenError: If the token is expired, malformed or not signed for this project
            IdentityProviderUnavailable: If the signing keys cannot be fetched
        """
        if not self.project_id:
            raise IdentityProviderUnavailable("FIREBASE_PROJECT_ID is not configured")

        try:
            signing_key = self._jwk_client.get_signing_key_from_jwt(token).key
        except jwt.exceptions.DecodeError as e:
            raise InvalidTokenError(f"Malformed token: {e}") from e
        except PyJWKClientConnectionError as e:
            raise IdentityProviderUnavailable(str(e)) from e
        except PyJWKClientError as e:
            # No key matches the token kid
            raise InvalidTokenError(str(e)) from e

        try:
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=self.ALGORITHMS,
                audience=self.project_id,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidTokenError("Token has expired") from e
        except jwt.PyJWTError as e:
            raise InvalidTokenError(f"Token validation failed: {e}") from e

        return user_from_claims(claims)


def user_from_claims(claims: dict) -> AuthenticatedUser:
    """
    Build the request identity from decoded token claims.

    Raises:
        InvalidTokenError: If the subject or email claim is missing
    """
    uid = claims.get("sub") or claims.get("user_id")
    if not isinstance(uid, str) or not uid.strip():
        raise InvalidTokenError("Token has no subject")

    email = claims.get("email")
    if not isinstance(email, str) or not email.strip():
        raise InvalidTokenError("Token has no email claim")

    return AuthenticatedUser(
        uid=uid,
        email=email.strip(),
        name=claims.get("name"),
        claims=claims,
    )


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> AuthenticatedUser:
    """
    Resolve the authenticated identity for a protected route.

    Declared as a plain function so FastAPI runs it in the threadpool; the
    key fetch inside the verifier is blocking.

    Raises:
        HTTPException: 401 if the credential is missing or rejected,
            503 if the identity provider is unreachable
    """
    if credentials is None or not credentials.credentials:
        logger.warning("Missing bearer credential", path=request.url.path)
        raise _unauthorized("Unauthorized access")

    try:
        user = verifier.verify(credentials.credentials)
    except InvalidTokenError as e:
        logger.warning("Invalid bearer token", path=request.url.path, error=str(e))
        raise _unauthorized("Unauthorized access")
    except IdentityProviderUnavailable as e:
        logger.error("Identity provider unavailable", path=request.url.path, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        )

    logger.debug("Authenticated request", path=request.url.path, uid=user.uid)
    return user
