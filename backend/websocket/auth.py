"""Credential verification for the WebSocket ``auth`` handshake.

The hub depends only on the CredentialVerifier protocol: an async
``verify(credential) -> identity`` that raises one of the
AuthenticationError subclasses on failure. Token issuance lives
elsewhere; this module only checks tokens.

JWTCredentialVerifier is the production implementation. It decodes
HMAC-signed JWTs with python-jose and reads the identity from a
configurable claim (``id`` by default, falling back to ``sub``). An
optional async principal lookup confirms the identity still exists.

Usage:
    verifier = JWTCredentialVerifier.from_settings(get_settings())
    identity = await verifier.verify(token)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from backend.common.config import Settings
from backend.common.logging import get_logger
from backend.websocket.exceptions import (
    ExpiredCredential,
    InvalidCredential,
    PrincipalNotFound,
)

logger = get_logger("AUTH")

PrincipalLookup = Callable[[str], Awaitable[bool]]


class CredentialVerifier(Protocol):
    async def verify(self, credential: str) -> str:
        """Resolve a credential to an identity or raise AuthenticationError."""
        ...


class JWTCredentialVerifier:
    """Verify signed JWTs and resolve the identity they carry.

    Args:
        secret: HMAC secret shared with the token issuer.
        algorithm: Accepted signing algorithm.
        identity_claim: Claim holding the identity; ``sub`` is the fallback.
        principal_exists: Optional async lookup; returning False maps to
            PrincipalNotFound.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        identity_claim: str = "id",
        principal_exists: PrincipalLookup | None = None,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._identity_claim = identity_claim
        self._principal_exists = principal_exists

    @classmethod
    def from_settings(
        cls, settings: Settings, principal_exists: PrincipalLookup | None = None
    ) -> JWTCredentialVerifier:
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            identity_claim=settings.jwt_identity_claim,
            principal_exists=principal_exists,
        )

    async def verify(self, credential: str) -> str:
        """Decode the token and return its identity.

        Raises:
            ExpiredCredential: The ``exp`` claim is in the past.
            InvalidCredential: Bad signature, malformed token, or no identity claim.
            PrincipalNotFound: The principal lookup does not know the identity.
        """
        try:
            claims = jwt.decode(credential, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredCredential("Credential expired") from exc
        except JWTError as exc:
            raise InvalidCredential("Invalid credential", context={"reason": str(exc)}) from exc

        if self._identity_claim in claims:
            identity = claims[self._identity_claim]
        else:
            identity = claims.get("sub")
        if identity is None or identity == "":
            raise InvalidCredential(
                "Invalid credential",
                context={"reason": f"missing '{self._identity_claim}' claim"},
            )
        identity = str(identity)

        if self._principal_exists is not None and not await self._principal_exists(identity):
            raise PrincipalNotFound("Principal not found", context={"identity": identity})

        return identity
