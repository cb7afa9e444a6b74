from __future__ import annotations

import hmac
from hashlib import sha256

from webhook_service.services.signer import generate_secret, sign, signature_header, verify

BODY = b'{"event":"deal.created","data":{"current":{"value":50000}}}'


def test_sign_is_hmac_sha256_hex():
    expected = hmac.new(b"topsecret", BODY, sha256).hexdigest()
    assert sign("topsecret", BODY) == expected
    assert signature_header("topsecret", BODY) == f"sha256={expected}"


def test_verify_accepts_both_forms():
    signature = sign("topsecret", BODY)
    assert verify("topsecret", BODY, signature)
    assert verify("topsecret", BODY, f"sha256={signature}")


def test_verify_detects_tampering():
    header = signature_header("topsecret", BODY)
    assert not verify("topsecret", BODY + b" ", header)
    assert not verify("other-secret", BODY, header)
    assert not verify("topsecret", BODY, "sha256=" + "0" * 64)
    assert not verify("topsecret", BODY, "not-a-signature-ü")


def test_generate_secret_is_64_hex_chars():
    secret = generate_secret()
    assert len(secret) == 64
    int(secret, 16)
    assert generate_secret() != secret
