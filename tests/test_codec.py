"""Tests for the credential token codec (core/codec.py)."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from qr_events.core.cipher import SymmetricCipher
from qr_events.core.codec import TokenCodec
from qr_events.core.config import CryptoConfig
from qr_events.core.errors import (
    CryptoError,
    DecryptionError,
    ExpiredTokenError,
    IntegrityError,
    MalformedTokenError,
    ValidationError,
)
from qr_events.core.stamper import IntegrityStamper

from conftest import HOUR_MS, T0


def _forge(config: CryptoConfig, plaintext: str) -> str:
    """Build a correctly keyed token around arbitrary plaintext."""
    ct = SymmetricCipher(config.cipher_secret).encrypt(plaintext)
    return ct + "." + IntegrityStamper(config.mac_secret).stamp(ct)


def _payload(**overrides) -> str:
    data = {
        "guestId": "GST_1",
        "eventId": "EVT_1",
        "timestamp": T0,
        "expires": T0 + HOUR_MS,
        "used": False,
        "version": "1.0",
    }
    data.update(overrides)
    return json.dumps({k: v for k, v in data.items() if v is not ...})


# --- issue ---

def test_round_trip(codec):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1", lifetime_hours=1)
    payload = codec.verify(token)
    assert payload.guest_id == "GST_1"
    assert payload.event_id == "EVT_1"
    assert payload.issued_at_millis == T0
    assert payload.expires_at_millis == T0 + HOUR_MS
    assert payload.issued_at_millis < payload.expires_at_millis
    assert payload.used is False
    assert payload.schema_version == "1.0"


def test_ids_are_trimmed_at_issue(codec):
    token = codec.issue(guest_id="  GST_1 ", event_id="\tEVT_1\n")
    payload = codec.verify(token)
    assert (payload.guest_id, payload.event_id) == ("GST_1", "EVT_1")


def test_numeric_ids_are_stringified(codec):
    payload = codec.verify(codec.issue(guest_id=42, event_id=7))
    assert (payload.guest_id, payload.event_id) == ("42", "7")


def test_default_lifetime_is_24_hours(codec):
    _, payload = codec.sign(guest_id="GST_1", event_id="EVT_1")
    assert payload.expires_at_millis - payload.issued_at_millis == 24 * HOUR_MS


def test_codec_accepts_any_positive_lifetime(codec):
    _, payload = codec.sign(guest_id="GST_1", event_id="EVT_1", lifetime_hours=500)
    assert payload.expires_at_millis == T0 + 500 * HOUR_MS


def test_token_is_opaque(codec):
    token = codec.issue(guest_id="GST_SECRET_GUEST", event_id="EVT_SECRET_EVENT")
    assert "GST_SECRET_GUEST" not in token
    assert "EVT_SECRET_EVENT" not in token
    ct, mac = token.split(".")
    assert len(mac) == 64
    int(mac, 16)


def test_same_input_gives_different_tokens(codec):
    a = codec.issue(guest_id="GST_1", event_id="EVT_1")
    b = codec.issue(guest_id="GST_1", event_id="EVT_1")
    assert a != b


@pytest.mark.parametrize("guest_id,event_id", [
    ("", "EVT_1"),
    ("GST_1", ""),
    ("   ", "EVT_1"),
    ("GST_1", "  \t"),
    (None, "EVT_1"),
    ("GST_1", None),
])
def test_issue_rejects_blank_ids(codec, guest_id, event_id):
    with pytest.raises(ValidationError):
        codec.issue(guest_id=guest_id, event_id=event_id)


@pytest.mark.parametrize("hours", [0, -1, -0.5, True, "24", float("nan"), float("inf")])
def test_issue_rejects_bad_lifetime(codec, hours):
    with pytest.raises(ValidationError):
        codec.issue(guest_id="GST_1", event_id="EVT_1", lifetime_hours=hours)


def test_issue_wraps_primitive_failure(codec):
    with patch("qr_events.core.cipher.os.urandom", side_effect=OSError("no entropy")):
        with pytest.raises(CryptoError):
            codec.issue(guest_id="GST_1", event_id="EVT_1")


# --- verify: structure and integrity ---

@pytest.mark.parametrize("token", ["", "abc", "a.b.c", ".abc", "abc.", "."])
def test_verify_rejects_bad_structure(codec, token):
    with pytest.raises(MalformedTokenError):
        codec.verify(token)


@pytest.mark.parametrize("token", [None, 123, b"abc.def"])
def test_verify_rejects_non_string(codec, token):
    with pytest.raises(MalformedTokenError):
        codec.verify(token)


def test_every_single_character_flip_is_detected(codec):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1")
    for i, ch in enumerate(token):
        replacement = "A" if ch != "A" else "B"
        tampered = token[:i] + replacement + token[i + 1:]
        with pytest.raises((IntegrityError, MalformedTokenError)):
            codec.verify(tampered)


def test_flip_to_separator_is_malformed(codec):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1")
    tampered = "." + token[1:]
    with pytest.raises(MalformedTokenError):
        codec.verify(tampered)


def test_mac_is_checked_before_decryption(codec):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1")
    tampered = token[:-1] + ("0" if token[-1] != "0" else "1")
    with patch.object(SymmetricCipher, "decrypt") as decrypt:
        with pytest.raises(IntegrityError):
            codec.verify(tampered)
    decrypt.assert_not_called()


def test_wrong_mac_key_is_integrity_error(codec, clock):
    other = TokenCodec(
        CryptoConfig(cipher_secret=b"unit-test-cipher-secret-abcdefghijklmnop", mac_secret=b"x" * 40),
        clock=clock,
    )
    token = other.issue(guest_id="GST_1", event_id="EVT_1")
    with pytest.raises(IntegrityError):
        codec.verify(token)


def test_non_ascii_mac_is_integrity_error(codec):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1")
    ct, _ = token.split(".")
    with pytest.raises(IntegrityError):
        codec.verify(ct + "." + "é" * 64)


# --- verify: decryption and payload ---

def test_wrong_cipher_key_with_valid_mac_is_decryption_error(crypto_config, codec):
    ct = SymmetricCipher(b"some-other-cipher-secret-0123456789abc").encrypt(_payload())
    token = ct + "." + IntegrityStamper(crypto_config.mac_secret).stamp(ct)
    with pytest.raises(DecryptionError):
        codec.verify(token)


def test_non_base64_ciphertext_with_valid_mac_is_decryption_error(crypto_config, codec):
    ct = "not*base64!"
    token = ct + "." + IntegrityStamper(crypto_config.mac_secret).stamp(ct)
    with pytest.raises(DecryptionError):
        codec.verify(token)


def test_short_ciphertext_is_decryption_error(crypto_config, codec):
    ct = "Zm9vYmFy"
    token = ct + "." + IntegrityStamper(crypto_config.mac_secret).stamp(ct)
    with pytest.raises(DecryptionError):
        codec.verify(token)


def test_payload_not_json(crypto_config, codec):
    with pytest.raises(MalformedTokenError):
        codec.verify(_forge(crypto_config, "definitely not json"))


def test_payload_not_object(crypto_config, codec):
    with pytest.raises(MalformedTokenError):
        codec.verify(_forge(crypto_config, "[1, 2, 3]"))


def test_payload_missing_fields_are_listed(crypto_config, codec):
    token = _forge(crypto_config, _payload(expires=..., guestId=""))
    with pytest.raises(MalformedTokenError) as exc_info:
        codec.verify(token)
    assert exc_info.value.details["missing"] == ["guestId", "expires"]


def test_payload_unknown_version(crypto_config, codec):
    with pytest.raises(MalformedTokenError) as exc_info:
        codec.verify(_forge(crypto_config, _payload(version="9.9")))
    assert exc_info.value.details["version"] == "9.9"


def test_payload_without_version_is_v1(crypto_config, codec):
    payload = codec.verify(_forge(crypto_config, _payload(version=...)))
    assert payload.schema_version == "1.0"


def test_payload_with_unknown_field_is_rejected(crypto_config, codec):
    with pytest.raises(MalformedTokenError):
        codec.verify(_forge(crypto_config, _payload(role="vip")))


def test_payload_marked_used_is_rejected(crypto_config, codec):
    with pytest.raises(MalformedTokenError):
        codec.verify(_forge(crypto_config, _payload(used=True)))


def test_payload_with_inverted_window_is_rejected(crypto_config, codec):
    with pytest.raises(MalformedTokenError):
        codec.verify(_forge(crypto_config, _payload(expires=T0 - 1)))


def test_payload_ids_are_renormalized(crypto_config, codec):
    payload = codec.verify(_forge(crypto_config, _payload(guestId="  GST_1  ", eventId=" EVT_1")))
    assert (payload.guest_id, payload.event_id) == ("GST_1", "EVT_1")


def test_payload_whitespace_only_id_is_rejected(crypto_config, codec):
    with pytest.raises(MalformedTokenError):
        codec.verify(_forge(crypto_config, _payload(guestId="   ")))


# --- verify: expiry ---

def test_expiry_boundary(codec):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1", lifetime_hours=3)
    expires = T0 + 3 * HOUR_MS
    assert codec.verify(token, now=expires - 1).guest_id == "GST_1"
    assert codec.verify(token, now=expires).guest_id == "GST_1"
    with pytest.raises(ExpiredTokenError) as exc_info:
        codec.verify(token, now=expires + 1)
    assert exc_info.value.details["expiresAt"] == expires


def test_expiry_uses_injected_clock(codec, clock):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1", lifetime_hours=1)
    clock.advance(HOUR_MS + 1)
    with pytest.raises(ExpiredTokenError):
        codec.verify(token)


def test_concrete_scenario(codec, clock):
    token = codec.issue(guest_id="GST_1", event_id="EVT_1", lifetime_hours=1)
    payload = codec.verify(token)
    assert (payload.guest_id, payload.event_id) == ("GST_1", "EVT_1")
    clock.advance(HOUR_MS + 60_000)
    with pytest.raises(ExpiredTokenError):
        codec.verify(token)
