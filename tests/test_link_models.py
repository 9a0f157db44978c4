"""Tests for credential bounding and link event helpers."""

from __future__ import annotations

import logging

import msgspec
import pytest

from stalink.link.models import (
    Credential,
    CredentialReceived,
    LinkDown,
    MalformedCredentialError,
    RetryNow,
    event_name,
    log_truncation,
)


def test_bounded_credential_within_limits_is_unchanged() -> None:
    credential, truncated = Credential.bounded("HomeNet", "correct horse", bytes(6))

    assert credential == Credential(ssid="HomeNet", secret="correct horse", bssid=bytes(6))
    assert truncated == ()


def test_bounded_credential_clips_ssid_and_secret() -> None:
    credential, truncated = Credential.bounded("N" * 33, "p" * 70)

    assert credential.ssid == "N" * 32
    assert credential.secret == "p" * 64
    assert truncated == ("ssid", "secret")


def test_bounded_credential_cuts_on_character_boundary() -> None:
    """Test a multi-byte character straddling the limit is dropped whole."""
    ssid = "a" * 31 + "é"

    credential, truncated = Credential.bounded(ssid, "")

    assert credential.ssid == "a" * 31
    assert len(credential.ssid.encode("utf-8")) <= 32
    assert truncated == ("ssid",)


@pytest.mark.parametrize(
    ("ssid", "bssid"),
    [
        ("", None),
        ("Lab", b"\x01\x02\x03\x04\x05"),
        ("Lab", bytes(7)),
    ],
)
def test_bounded_credential_rejects_malformed_input(ssid: str, bssid: bytes | None) -> None:
    with pytest.raises(MalformedCredentialError):
        Credential.bounded(ssid, "secret", bssid)


def test_describe_includes_bssid_when_present() -> None:
    assert Credential(ssid="Lab").describe() == "Lab"
    assert Credential(ssid="Lab", bssid=bytes.fromhex("a0b1c2d3e4f5")).describe() == "Lab (a0:b1:c2:d3:e4:f5)"


def test_log_truncation_reports_each_field(caplog) -> None:
    logger = logging.getLogger("stalink.test")
    credential = Credential(ssid="N" * 32, secret="p" * 64)

    with caplog.at_level(logging.ERROR, logger="stalink.test"):
        log_truncation(logger, credential, ("ssid", "secret"), "Provisioned")

    messages = [record.getMessage() for record in caplog.records]
    assert messages == [
        "Provisioned credential ssid exceeded 32 bytes and was truncated before use.",
        "Provisioned credential secret exceeded 64 bytes and was truncated before use.",
    ]


def test_event_name_uses_struct_tag() -> None:
    assert event_name(RetryNow()) == "RetryNow"
    assert event_name(LinkDown(reason="auth fail")) == "LinkDown"


def test_events_round_trip_through_tagged_union() -> None:
    encoded = msgspec.json.encode(CredentialReceived(ssid="Lab", secret="pw"))

    decoded = msgspec.json.decode(encoded, type=CredentialReceived | RetryNow)

    assert decoded == CredentialReceived(ssid="Lab", secret="pw")
