from __future__ import annotations

import base64
import hmac
import secrets
import string
import struct
from dataclasses import dataclass
from typing import Callable

from totp_code.core.errors import CalculatorError, ClockBeforeOriginError, DigestUnavailableError
from totp_code.core.otp.algorithms import DigestAlgorithm
from totp_code.core.otp.types import OtpResult, TotpParameters

HmacFunc = Callable[[DigestAlgorithm, bytes, bytes], bytes]

_MAX_COUNTER = 0xFFFF_FFFF_FFFF_FFFF


@dataclass(frozen=True, slots=True)
class TotpVerificationResult:
    is_valid: bool
    matched_counter: int | None


def stdlib_hmac(algorithm: DigestAlgorithm, key: bytes, message: bytes) -> bytes:
    try:
        return hmac.new(key, message, algorithm.hashlib_name).digest()
    except ValueError as exc:
        raise DigestUnavailableError(f"HMAC-{algorithm.name} is not supported by this runtime") from exc


def generate_totp_secret(bytes_length: int = 20) -> str:
    if bytes_length <= 0:
        raise ValueError("bytes_length must be positive")
    raw = secrets.token_bytes(bytes_length)
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def time_counter(params: TotpParameters, adjusted_now: int) -> int:
    if adjusted_now < params.time_origin:
        raise ClockBeforeOriginError(
            f"adjusted time {adjusted_now} precedes the time origin {params.time_origin}"
        )
    counter = (adjusted_now - params.time_origin) // params.time_step
    if counter > _MAX_COUNTER:
        raise CalculatorError("time counter does not fit in 64 bits")
    return counter


def truncate(digest: bytes) -> int:
    offset = digest[-1] & 0x0F
    return struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF


def format_code(binary: int, digits: int) -> str:
    return f"{binary % 10**digits:0{digits}d}"


def code_for_counter(
    params: TotpParameters,
    secret: bytes,
    counter: int,
    *,
    hmac_func: HmacFunc | None = None,
) -> str:
    hmac_func = hmac_func or stdlib_hmac
    digest = hmac_func(params.digest_algorithm, secret, struct.pack(">Q", counter))
    expected_size = params.digest_algorithm.digest_size
    if len(digest) != expected_size:
        raise DigestUnavailableError(
            f"HMAC-{params.digest_algorithm.name} produced a {len(digest)} byte digest, expected {expected_size}"
        )
    return format_code(truncate(digest), params.digit_count)


def calculate(
    params: TotpParameters,
    secret: bytes,
    adjusted_now: int,
    *,
    hmac_func: HmacFunc | None = None,
) -> OtpResult:
    """Compute the TOTP code for `adjusted_now` (current time plus offset).

    Pure function: safe to call concurrently with different inputs.
    """
    counter = time_counter(params, adjusted_now)
    code = code_for_counter(params, secret, counter, hmac_func=hmac_func)
    return OtpResult(code=code, counter=counter, digest_algorithm=params.digest_algorithm)


def verify_totp_code(
    params: TotpParameters,
    secret: bytes,
    code: str,
    *,
    adjusted_now: int,
    window: int = 0,
    last_verified_counter: int | None = None,
    hmac_func: HmacFunc | None = None,
) -> TotpVerificationResult:
    if window < 0:
        raise ValueError("window must be non-negative")
    normalized_code = _normalize_code(code)
    if len(normalized_code) != params.digit_count:
        return TotpVerificationResult(is_valid=False, matched_counter=None)

    current = time_counter(params, adjusted_now)
    for offset in range(-window, window + 1):
        counter = current + offset
        if counter < 0 or counter > _MAX_COUNTER:
            continue
        if last_verified_counter is not None and counter <= last_verified_counter:
            continue
        expected = code_for_counter(params, secret, counter, hmac_func=hmac_func)
        if hmac.compare_digest(expected, normalized_code):
            return TotpVerificationResult(is_valid=True, matched_counter=counter)
    return TotpVerificationResult(is_valid=False, matched_counter=None)


def _normalize_code(code: str) -> str:
    return "".join(ch for ch in code if ch in string.digits)
