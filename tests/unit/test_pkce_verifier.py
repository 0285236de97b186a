"""
Unit tests for PKCE verification
"""

import base64
import hashlib

import pytest

from oidc_op.auth.pkce_verifier import PKCEError, PKCEVerifier, create_pkce_pair

# RFC 7636 appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def s256(verifier):
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


class TestCodeChallenge:
    """Test challenge generation and verification"""

    def test_s256_matches_rfc_example(self):
        """Test S256 transformation against the RFC 7636 example"""
        assert PKCEVerifier.generate_code_challenge(RFC_VERIFIER) == RFC_CHALLENGE

    def test_verify_correct_verifier(self):
        assert PKCEVerifier.verify_code_challenge(RFC_VERIFIER, RFC_CHALLENGE, "S256")

    def test_verify_wrong_verifier(self):
        other = create_pkce_pair().code_verifier
        assert not PKCEVerifier.verify_code_challenge(other, RFC_CHALLENGE, "S256")

    def test_verify_mismatched_short_verifier_is_false(self):
        """Test a short verifier that does not hash to the challenge fails without raising"""
        assert not PKCEVerifier.verify_code_challenge("short", RFC_CHALLENGE, "S256")

    def test_verify_short_verifier_matching_challenge(self):
        """Test verification hashes the verifier as given, without a length gate"""
        challenge = s256("v")
        assert PKCEVerifier.verify_code_challenge("v", challenge, "S256")

    def test_verify_empty_verifier_is_false(self):
        assert not PKCEVerifier.verify_code_challenge("", RFC_CHALLENGE, "S256")

    def test_generated_pair_round_trip(self):
        pair = create_pkce_pair()
        assert len(pair.code_verifier) == 64
        assert pair.code_challenge_method == "S256"
        assert PKCEVerifier.verify_code_challenge(pair.code_verifier, pair.code_challenge, "S256")

    def test_verifier_length_limits(self):
        with pytest.raises(PKCEError):
            PKCEVerifier.generate_code_verifier(42)
        with pytest.raises(PKCEError):
            PKCEVerifier.generate_code_verifier(129)


class TestChallengePolicy:
    """Test authorization-time challenge checks"""

    def test_s256_accepted(self):
        assert PKCEVerifier().check_challenge(RFC_CHALLENGE, "S256") == "S256"

    def test_plain_rejected_by_default(self):
        with pytest.raises(PKCEError):
            PKCEVerifier().check_challenge(RFC_VERIFIER, "plain")

    def test_missing_method_defaults_to_plain(self):
        """Test a challenge without method is treated as plain and rejected"""
        with pytest.raises(PKCEError):
            PKCEVerifier().check_challenge(RFC_VERIFIER, None)

    def test_plain_allowed_by_policy(self):
        assert PKCEVerifier(allow_plain=True).check_challenge(RFC_VERIFIER, None) == "plain"

    def test_unknown_method_rejected(self):
        with pytest.raises(PKCEError):
            PKCEVerifier(allow_plain=True).check_challenge(RFC_CHALLENGE, "S512")

    def test_malformed_s256_challenge_rejected(self):
        with pytest.raises(PKCEError):
            PKCEVerifier().check_challenge("not-a-hash", "S256")
