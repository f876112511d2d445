"""Tests for webhook security module."""

import hashlib
import hmac
import json

import pytest

from leadhub.webhooks.security import (
    SIGNATURE_HEADER,
    create_signature_headers,
    generate_signature,
    serialize_payload,
    verify_from_headers,
    verify_signature,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def sample_payload():
    """Sample webhook payload."""
    return {
        "event": "lead.created",
        "timestamp": "2024-01-01T00:00:00+00:00",
        "lead": {"id": 7, "name": "Zoë Müller", "company": "Acme"},
    }


@pytest.fixture
def sample_secret():
    """Sample webhook secret."""
    return "whsec_test_secret_key"


# ============================================================================
# serialize_payload Tests
# ============================================================================


class TestSerializePayload:
    """Tests for serialize_payload function."""

    def test_compact_separators(self):
        """Test that no whitespace is emitted between tokens."""
        body = serialize_payload({"a": 1, "b": [1, 2]})

        assert body == b'{"a":1,"b":[1,2]}'

    def test_utf8_not_escaped(self, sample_payload):
        """Test that non-ASCII text is sent as UTF-8 rather than \\u escapes."""
        body = serialize_payload(sample_payload)

        assert "Zoë Müller".encode() in body
        assert json.loads(body.decode("utf-8")) == sample_payload

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_numbers_rejected(self, value):
        """Test that values strict JSON parsers reject are never sent."""
        with pytest.raises(ValueError):
            serialize_payload({"lead": {"value": value}})


# ============================================================================
# generate_signature / verify_signature Tests
# ============================================================================


class TestGenerateSignature:
    """Tests for generate_signature function."""

    def test_matches_hmac_sha256_of_body(self, sample_payload, sample_secret):
        """Test the signature is the plain hex HMAC of the exact body bytes."""
        body = serialize_payload(sample_payload)
        expected = hmac.new(sample_secret.encode(), body, hashlib.sha256).hexdigest()

        assert generate_signature(body, sample_secret) == expected

    def test_hex_without_prefix(self, sample_secret):
        """Test signature format."""
        signature = generate_signature(b"{}", sample_secret)

        assert len(signature) == 64
        assert signature == signature.lower()
        assert "=" not in signature

    def test_string_body_encoded_as_utf8(self, sample_secret):
        """Test str and bytes bodies sign identically."""
        assert generate_signature('{"x":"é"}', sample_secret) == generate_signature(
            '{"x":"é"}'.encode(), sample_secret
        )

    def test_different_secrets(self):
        """Test that different secrets produce different signatures."""
        assert generate_signature(b"{}", "secret1") != generate_signature(b"{}", "secret2")


class TestVerifySignature:
    """Tests for verify_signature function."""

    def test_valid_signature(self, sample_payload, sample_secret):
        body = serialize_payload(sample_payload)
        signature = generate_signature(body, sample_secret)

        assert verify_signature(body, signature, sample_secret) is True

    def test_wrong_secret(self, sample_payload, sample_secret):
        body = serialize_payload(sample_payload)
        signature = generate_signature(body, sample_secret)

        assert verify_signature(body, signature, "other") is False

    def test_tampered_body(self, sample_payload, sample_secret):
        """Test that any byte change invalidates the signature."""
        body = serialize_payload(sample_payload)
        signature = generate_signature(body, sample_secret)

        # Same JSON value, different bytes
        reformatted = json.dumps(sample_payload).encode()
        assert verify_signature(reformatted, signature, sample_secret) is False

    def test_uppercase_signature_accepted(self, sample_secret):
        signature = generate_signature(b"{}", sample_secret)

        assert verify_signature(b"{}", signature.upper(), sample_secret) is True


# ============================================================================
# Header helpers Tests
# ============================================================================


class TestSignatureHeaders:
    """Tests for create_signature_headers and verify_from_headers."""

    def test_headers_with_secret(self, sample_secret):
        headers = create_signature_headers(b"{}", sample_secret)

        assert headers == {SIGNATURE_HEADER: generate_signature(b"{}", sample_secret)}

    def test_no_header_without_secret(self):
        """Test unsigned webhooks send no signature header at all."""
        assert create_signature_headers(b"{}", None) == {}
        assert create_signature_headers(b"{}", "") == {}

    def test_verify_from_headers_case_insensitive(self, sample_secret):
        headers = {"x-webhook-signature": generate_signature(b"{}", sample_secret)}

        assert verify_from_headers(b"{}", headers, sample_secret) is True

    def test_verify_from_headers_missing(self, sample_secret):
        with pytest.raises(ValueError, match="Missing"):
            verify_from_headers(b"{}", {}, sample_secret)
