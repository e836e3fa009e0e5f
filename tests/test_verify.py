"""Tests for webhook signature and verify-token checks."""

import hashlib
import hmac

import pytest

from janet.errors import AuthenticationError
from janet.verify import compute_signature, require_signature, verify_signature, verify_webhook_token


class TestSignature:
    def test_matches_hmac_sha256(self):
        body = b'{"object":"whatsapp_business_account"}'
        expected = "sha256=" + hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert compute_signature(body, "secret") == expected

    def test_valid_signature_accepted(self):
        body = b"payload bytes"
        assert verify_signature(body, compute_signature(body, "s3cr3t"), "s3cr3t")

    def test_flipping_any_byte_rejects(self):
        body = b"hello world"
        signature = compute_signature(body, "secret")
        for i in range(len(body)):
            tampered = bytearray(body)
            tampered[i] ^= 0x01
            assert not verify_signature(bytes(tampered), signature, "secret")

    def test_wrong_secret_rejected(self):
        body = b"payload"
        assert not verify_signature(body, compute_signature(body, "one"), "two")

    def test_missing_signature_rejected(self):
        assert not verify_signature(b"payload", None, "secret")
        assert not verify_signature(b"payload", "", "secret")

    def test_missing_secret_rejected(self):
        assert not verify_signature(b"payload", compute_signature(b"payload", ""), "")

    def test_non_ascii_signature_does_not_raise(self):
        assert not verify_signature(b"payload", "sha256=é", "secret")


class TestVerifyToken:
    def test_subscribe_with_matching_token_returns_challenge(self):
        assert verify_webhook_token("subscribe", "tok", "1158201444", "tok") == "1158201444"

    def test_wrong_mode(self):
        assert verify_webhook_token("unsubscribe", "tok", "c", "tok") is None

    def test_wrong_token(self):
        assert verify_webhook_token("subscribe", "nope", "c", "tok") is None

    def test_unconfigured_token_never_matches(self):
        assert verify_webhook_token("subscribe", "", "c", "") is None


class TestRequireSignature:
    def test_passes_on_match(self):
        body = b"{}"
        require_signature(body, compute_signature(body, "s"), "s")

    def test_missing(self):
        with pytest.raises(AuthenticationError, match="Missing"):
            require_signature(b"{}", None, "s")

    def test_mismatch(self):
        with pytest.raises(AuthenticationError, match="Invalid"):
            require_signature(b"{}", "sha256=00", "s")
