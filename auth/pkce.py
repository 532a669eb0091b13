"""
auth/pkce.py -- PKCE (RFC 7636) helpers for the CLI authorization flow.

Only the S256 method is supported. The transform itself comes from authlib
(the same library the provider client uses) so the challenge the CLI sends
and the one the server recomputes are produced by one implementation.

Security notes:
  [P1] verify_code_verifier() compares with hmac.compare_digest so response
       time does not leak how many leading characters matched.
"""

from __future__ import annotations

import hmac
import re
import secrets

from authlib.oauth2.rfc7636 import create_s256_code_challenge

# base64url alphabet, no padding. 43 is the length of an S256 challenge;
# 128 is the RFC's upper bound for verifiers and challenges alike.
CODE_CHALLENGE_RE = re.compile(r"[A-Za-z0-9_-]{43,128}")


def is_valid_code_challenge(value: str) -> bool:
    return isinstance(value, str) and CODE_CHALLENGE_RE.fullmatch(value) is not None


def compute_code_challenge(code_verifier: str) -> str:
    """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))), unpadded."""
    return create_s256_code_challenge(code_verifier)


def verify_code_verifier(code_verifier: str, code_challenge: str) -> bool:
    try:
        computed = compute_code_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed.encode("ascii"), code_challenge.encode("ascii"))


def generate_code_verifier() -> str:
    """Return a fresh 86-character verifier (64 random bytes, base64url)."""
    return secrets.token_urlsafe(64)
