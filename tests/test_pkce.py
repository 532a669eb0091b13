"""Unit tests for auth/pkce.py -- S256 challenge handling.

Covers:
- RFC 7636 Appendix B test vector
- Challenge format validation (charset and 43..128 length)
- Verifier check: match, mismatch, non-ASCII input
"""

from __future__ import annotations

import pytest

from auth.pkce import (
    compute_code_challenge,
    generate_code_verifier,
    is_valid_code_challenge,
    verify_code_verifier,
)

RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestComputeChallenge:
    def test_rfc_7636_vector(self):
        assert compute_code_challenge(RFC_VERIFIER) == RFC_CHALLENGE

    def test_output_is_unpadded_base64url(self):
        challenge = compute_code_challenge(generate_code_verifier())
        assert len(challenge) == 43
        assert "=" not in challenge
        assert is_valid_code_challenge(challenge)


class TestIsValidCodeChallenge:
    @pytest.mark.parametrize("value", [RFC_CHALLENGE, "a" * 43, "A-_" * 40 + "abcdefgh"])
    def test_accepts(self, value):
        assert is_valid_code_challenge(value)

    @pytest.mark.parametrize(
        "value",
        ["", "a" * 42, "a" * 129, RFC_CHALLENGE[:-1] + "=", RFC_CHALLENGE[:-1] + "+", "ä" * 43, RFC_CHALLENGE + "\n"],
    )
    def test_rejects(self, value):
        assert not is_valid_code_challenge(value)


class TestVerifyCodeVerifier:
    def test_match(self):
        assert verify_code_verifier(RFC_VERIFIER, RFC_CHALLENGE)

    def test_mismatch(self):
        assert not verify_code_verifier(RFC_VERIFIER + "x", RFC_CHALLENGE)

    def test_non_ascii_verifier_is_a_mismatch(self):
        assert not verify_code_verifier("vérifier-" + "a" * 40, RFC_CHALLENGE)
