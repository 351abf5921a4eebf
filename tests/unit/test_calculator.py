from __future__ import annotations

import base64
import hashlib
import hmac
import struct

import pytest

from totp_code.core.errors import (
    ClockBeforeOriginError,
    DigestUnavailableError,
    InvalidParametersError,
)
from totp_code.core.otp import calculator
from totp_code.core.otp.algorithms import DigestAlgorithm, parse_algorithm
from totp_code.core.otp.calculator import (
    calculate,
    format_code,
    generate_totp_secret,
    stdlib_hmac,
    truncate,
    verify_totp_code,
)
from totp_code.core.otp.types import TotpParameters

pytestmark = pytest.mark.unit

SHA1_SECRET = b"12345678901234567890"
SHA256_SECRET = b"12345678901234567890123456789012"
SHA512_SECRET = b"1234567890" * 6 + b"1234"


def _rfc6238(algorithm: DigestAlgorithm) -> TotpParameters:
    return TotpParameters(time_origin=0, time_step=30, digest_algorithm=algorithm, digit_count=8)


@pytest.mark.parametrize(
    ("now", "expected"),
    [
        (59, "94287082"),
        (1111111109, "07081804"),
        (1111111111, "14050471"),
        (1234567890, "89005924"),
        (2000000000, "69279037"),
        (20000000000, "65353130"),
    ],
)
def test_calculate_rfc6238_sha1_vectors(now: int, expected: str) -> None:
    result = calculate(_rfc6238(DigestAlgorithm.SHA1), SHA1_SECRET, now)
    assert result.code == expected
    assert result.counter == now // 30
    assert result.digest_algorithm is DigestAlgorithm.SHA1


@pytest.mark.parametrize(
    ("algorithm", "secret", "now", "expected"),
    [
        (DigestAlgorithm.SHA256, SHA256_SECRET, 59, "46119246"),
        (DigestAlgorithm.SHA256, SHA256_SECRET, 1111111109, "68084774"),
        (DigestAlgorithm.SHA256, SHA256_SECRET, 1234567890, "91819424"),
        (DigestAlgorithm.SHA512, SHA512_SECRET, 59, "90693936"),
        (DigestAlgorithm.SHA512, SHA512_SECRET, 1111111109, "25091201"),
        (DigestAlgorithm.SHA512, SHA512_SECRET, 1234567890, "93441116"),
    ],
)
def test_calculate_rfc6238_wide_digest_vectors(
    algorithm: DigestAlgorithm,
    secret: bytes,
    now: int,
    expected: str,
) -> None:
    assert calculate(_rfc6238(algorithm), secret, now).code == expected


@pytest.mark.parametrize("algorithm", [DigestAlgorithm.SHA224, DigestAlgorithm.SHA384])
def test_calculate_matches_reference_truncation_for_other_digests(algorithm: DigestAlgorithm) -> None:
    params = TotpParameters(time_step=30, digest_algorithm=algorithm, digit_count=6)
    digest = hmac.new(SHA1_SECRET, struct.pack(">Q", 1234567890 // 30), getattr(hashlib, algorithm.value)).digest()
    assert len(digest) == algorithm.digest_size
    offset = digest[-1] & 0x0F
    binary = int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF
    assert calculate(params, SHA1_SECRET, 1234567890).code == f"{binary % 1_000_000:06d}"


def test_rfc4226_hotp_counters() -> None:
    # A time step of 30 with t0=0 maps adjusted time counter*30 onto the HOTP counter.
    params = TotpParameters(time_step=30, digit_count=6)
    expected = ["755224", "287082", "359152", "969429", "338314", "254676", "287922", "162583", "399871", "520489"]
    codes = [calculate(params, SHA1_SECRET, counter * 30).code for counter in range(10)]
    assert codes == expected


def test_truncate_rfc4226_example_digest() -> None:
    digest = bytes.fromhex("1f8698690e02ca16618550ef7f19da8e945b555a")
    assert truncate(digest) == 0x50EF7F19
    assert format_code(truncate(digest), 6) == "872921"


def test_truncate_masks_the_sign_bit() -> None:
    digest = bytes([0xFF] * 19 + [0x00])
    assert truncate(digest) == 0x7FFFFFFF


def test_format_code_pads_and_never_exceeds_digit_count() -> None:
    assert format_code(0x7FFFFFFF, 9) == "147483647"
    assert format_code(5, 9) == "000000005"
    assert format_code(0x7FFFFFFF, 1) == "7"


def test_calculate_uses_time_origin() -> None:
    shifted = TotpParameters(time_origin=1000, time_step=30, digit_count=8)
    assert calculate(shifted, SHA1_SECRET, 1059).code == "94287082"


def test_calculate_rejects_clock_before_origin() -> None:
    params = TotpParameters(time_origin=100, time_step=30)
    with pytest.raises(ClockBeforeOriginError):
        calculate(params, SHA1_SECRET, 99)
    assert calculate(params, SHA1_SECRET, 100).counter == 0


def test_calculate_rejects_short_digest_from_custom_hmac() -> None:
    params = TotpParameters()
    with pytest.raises(DigestUnavailableError):
        calculate(params, SHA1_SECRET, 59, hmac_func=lambda algorithm, key, message: b"")


def test_calculate_rejects_digest_of_the_wrong_algorithm() -> None:
    def _sha1_only(algorithm: DigestAlgorithm, key: bytes, message: bytes) -> bytes:
        return hmac.new(key, message, hashlib.sha1).digest()

    params = TotpParameters(digest_algorithm=DigestAlgorithm.SHA256)
    with pytest.raises(DigestUnavailableError, match="expected 32"):
        calculate(params, SHA1_SECRET, 59, hmac_func=_sha1_only)
    assert calculate(TotpParameters(), SHA1_SECRET, 59, hmac_func=_sha1_only).code == "287082"


def test_stdlib_hmac_reports_unsupported_digest(monkeypatch) -> None:
    def _unsupported(key, message, digestmod):
        raise ValueError(f"unsupported hash type {digestmod}")

    monkeypatch.setattr(calculator.hmac, "new", _unsupported)
    with pytest.raises(DigestUnavailableError):
        stdlib_hmac(DigestAlgorithm.SHA384, SHA1_SECRET, b"\x00" * 8)


def test_custom_hmac_receives_big_endian_counter() -> None:
    seen: list[tuple[DigestAlgorithm, bytes, bytes]] = []

    def _recording(algorithm: DigestAlgorithm, key: bytes, message: bytes) -> bytes:
        seen.append((algorithm, key, message))
        return stdlib_hmac(algorithm, key, message)

    calculate(TotpParameters(digest_algorithm=DigestAlgorithm.SHA256), b"key", 0x1_0000_0000 * 30, hmac_func=_recording)
    assert seen == [(DigestAlgorithm.SHA256, b"key", b"\x00\x00\x00\x01\x00\x00\x00\x00")]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"time_step": 4},
        {"digit_count": 0},
        {"digit_count": 10},
        {"time_origin": -1},
    ],
)
def test_parameters_enforce_bounds(kwargs: dict[str, int]) -> None:
    with pytest.raises(InvalidParametersError):
        TotpParameters(**kwargs)


def test_parameters_accept_bounds() -> None:
    params = TotpParameters(time_step=5, digit_count=9, time_offset=-3600)
    assert params.adjusted_time(10_000) == 6_400


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("sha1", DigestAlgorithm.SHA1),
        ("SHA256", DigestAlgorithm.SHA256),
        ("HMACSHA512", DigestAlgorithm.SHA512),
        ("hmac-sha224", DigestAlgorithm.SHA224),
        ("SHA-384", DigestAlgorithm.SHA384),
        ("md5", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_algorithm(name: str | None, expected: DigestAlgorithm | None) -> None:
    assert parse_algorithm(name) is expected


def test_verify_totp_code_blocks_replayed_counter() -> None:
    params = TotpParameters(digit_count=8)
    first = verify_totp_code(params, SHA1_SECRET, "94287082", adjusted_now=59)
    assert first.is_valid is True
    assert first.matched_counter == 1

    replay = verify_totp_code(
        params,
        SHA1_SECRET,
        "94287082",
        adjusted_now=59,
        last_verified_counter=first.matched_counter,
    )
    assert replay.is_valid is False
    assert replay.matched_counter is None


def test_verify_totp_code_window_accepts_previous_step() -> None:
    params = TotpParameters(digit_count=8)
    assert verify_totp_code(params, SHA1_SECRET, "9428 7082", adjusted_now=89).is_valid is False
    result = verify_totp_code(params, SHA1_SECRET, "9428 7082", adjusted_now=89, window=1)
    assert result.is_valid is True
    assert result.matched_counter == 1


def test_verify_totp_code_rejects_wrong_length() -> None:
    params = TotpParameters(digit_count=8)
    assert verify_totp_code(params, SHA1_SECRET, "287082", adjusted_now=59).is_valid is False


def test_generate_totp_secret_is_valid_base32() -> None:
    secret = generate_totp_secret()
    assert secret
    assert secret == secret.upper()
    padding = "=" * (-len(secret) % 8)
    decoded = base64.b32decode(secret + padding, casefold=True)
    assert len(decoded) == 20
