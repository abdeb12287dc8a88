"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier), which is
what lets a secret-less connected app complete the code exchange.
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


def _s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (43-128 URL-safe characters).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes behind the verifier (default 64,
            giving an 86 character verifier). Must be between 32 and 96
            so the encoded verifier stays within RFC 7636 bounds.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        if not 32 <= length <= 96:
            msg = f"PKCE verifier length must be between 32 and 96 bytes, got {length}"
            raise ValueError(msg)
        verifier = secrets.token_urlsafe(length)
        return cls(verifier=verifier, challenge=_s256(verifier))

    @classmethod
    def from_verifier(cls, verifier: str) -> PKCEChallenge:
        """Rebuild the pair from a stored verifier."""
        return cls(verifier=verifier, challenge=_s256(verifier))


def generate_state_token(nbytes: int = 32) -> str:
    """Return an opaque, unguessable OAuth ``state`` value."""
    return secrets.token_urlsafe(nbytes)
