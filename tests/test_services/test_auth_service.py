"""Unit tests for webhook signature and sync token verification."""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest

from imagesync.services.auth_service import (
    compute_signature,
    parse_bearer,
    verify_sync_token,
    verify_webhook_signature,
)

SECRET = "webhook-secret"
BODY = b'{"table_id": 1, "event_type": "rows.created", "items": []}'


def _hex(body: bytes = BODY, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestComputeSignature:
    def test_matches_hmac_sha256(self) -> None:
        assert compute_signature(BODY, SECRET).hex() == _hex()


class TestVerifyWebhookSignature:
    def test_full_hex_accepted(self) -> None:
        assert verify_webhook_signature(BODY, _hex(), SECRET) is True

    def test_uppercase_hex_accepted(self) -> None:
        assert verify_webhook_signature(BODY, _hex().upper(), SECRET) is True

    def test_truncated_hex_accepted(self) -> None:
        assert verify_webhook_signature(BODY, _hex()[:32], SECRET) is True

    def test_dashed_truncated_hex_accepted(self) -> None:
        digest = _hex()[:32]
        dashed = f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:]}"
        assert verify_webhook_signature(BODY, dashed, SECRET) is True

    def test_base64_accepted(self) -> None:
        signature = base64.b64encode(compute_signature(BODY, SECRET)).decode()
        assert verify_webhook_signature(BODY, signature, SECRET) is True

    def test_surrounding_whitespace_ignored(self) -> None:
        assert verify_webhook_signature(BODY, f"  {_hex()}\n", SECRET) is True

    def test_wrong_secret_rejected(self) -> None:
        assert verify_webhook_signature(BODY, _hex(secret="other"), SECRET) is False

    def test_tampered_body_rejected(self) -> None:
        assert verify_webhook_signature(BODY + b" ", _hex(), SECRET) is False

    def test_other_prefix_length_rejected(self) -> None:
        assert verify_webhook_signature(BODY, _hex()[:40], SECRET) is False

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_rejected(self, signature: str | None) -> None:
        assert verify_webhook_signature(BODY, signature, SECRET) is False

    def test_non_ascii_signature_rejected(self) -> None:
        assert verify_webhook_signature(BODY, "zażółć", SECRET) is False

    def test_empty_secret_skips_verification(self) -> None:
        assert verify_webhook_signature(BODY, None, "") is True


class TestParseBearer:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", "abc"),
            ("bearer  abc ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("Bearer   ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, header: str | None, expected: str | None) -> None:
        assert parse_bearer(header) == expected


class TestVerifySyncToken:
    def test_matching_token(self) -> None:
        assert verify_sync_token("Bearer s3cret", "s3cret") is True

    def test_wrong_token(self) -> None:
        assert verify_sync_token("Bearer nope", "s3cret") is False

    def test_missing_header(self) -> None:
        assert verify_sync_token(None, "s3cret") is False

    def test_unset_secret_never_matches(self) -> None:
        assert verify_sync_token("Bearer ", "") is False
        assert verify_sync_token("Bearer anything", "") is False
