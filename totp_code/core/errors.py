from __future__ import annotations

from typing import ClassVar, TypedDict


class ErrorDetail(TypedDict):
    code: str
    message: str


class ErrorEnvelope(TypedDict):
    error: ErrorDetail


class TotpCodeError(Exception):
    """Base class for every failure raised by the code generator.

    `code` is stable and safe to expose to operators and metrics labels.
    """

    code: ClassVar[str] = "totp_code_error"


# Base32 codec


class Base32Error(TotpCodeError, ValueError):
    code = "base32_error"

    def __init__(self, message: str, *, position: int | None = None) -> None:
        super().__init__(message)
        self.position = position


class InvalidSymbolError(Base32Error):
    code = "invalid_symbol"


class InvalidPaddingError(Base32Error):
    code = "invalid_padding"


class BufferTooSmallError(TotpCodeError, ValueError):
    code = "buffer_too_small"

    def __init__(self, message: str, *, required: int) -> None:
        super().__init__(message)
        self.required = required


# OTP calculator


class CalculatorError(TotpCodeError):
    code = "calculator_error"


class ClockBeforeOriginError(CalculatorError, ValueError):
    code = "clock_before_origin"


class DigestUnavailableError(CalculatorError, LookupError):
    code = "digest_unavailable"


# Replay cache


class CacheAllocationError(TotpCodeError):
    code = "allocation_failure"


# Parameter resolution


class InvalidParametersError(TotpCodeError, ValueError):
    code = "invalid_parameters"


class InvalidOverrideError(InvalidParametersError):
    code = "invalid_override"

    def __init__(self, message: str, *, attribute: str | None = None) -> None:
        super().__init__(message)
        self.attribute = attribute


class SecretReferenceError(TotpCodeError, LookupError):
    code = "secret_reference_error"


# Code generation service


class SecretDecodeError(TotpCodeError, ValueError):
    code = "secret_decode_error"


class CalculationError(TotpCodeError):
    code = "calculation_error"


class MissingCacheKeyError(TotpCodeError, ValueError):
    code = "missing_cache_key"


class InvalidCodeError(TotpCodeError, ValueError):
    code = "invalid_code"


class CodeReusedError(TotpCodeError, ValueError):
    code = "code_reused"


def error_envelope(exc: TotpCodeError) -> ErrorEnvelope:
    return {"error": {"code": exc.code, "message": str(exc)}}
