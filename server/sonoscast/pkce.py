"""
PKCE (Proof Key for Code Exchange) helpers for the authorization redirect.

    verifier = generate_code_verifier()
    challenge = generate_code_challenge(verifier)
    # challenge goes into the authorize URL, verifier into the code exchange
"""

import base64
import hashlib
import os


def generate_code_verifier(length: int = 64) -> str:
    """Generate a random code verifier string (43-128 chars, URL-safe)."""
    raw = os.urandom(length)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")[:128]


def generate_code_challenge(verifier: str) -> str:
    """Generate a code challenge from a verifier (S256 method)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
