from __future__ import annotations

from dataclasses import dataclass

from totp_code.core.errors import InvalidParametersError
from totp_code.core.otp.algorithms import DigestAlgorithm

MIN_TIME_STEP = 5
MIN_DIGITS = 1
MAX_DIGITS = 9


@dataclass(frozen=True, slots=True)
class TotpParameters:
    time_origin: int = 0
    time_step: int = 30
    time_offset: int = 0
    digest_algorithm: DigestAlgorithm = DigestAlgorithm.SHA1
    digit_count: int = 6

    def __post_init__(self) -> None:
        if self.time_origin < 0:
            raise InvalidParametersError("time_origin must be non-negative")
        if self.time_step < MIN_TIME_STEP:
            raise InvalidParametersError(f"time_step must be at least {MIN_TIME_STEP} seconds")
        if not MIN_DIGITS <= self.digit_count <= MAX_DIGITS:
            raise InvalidParametersError(f"digit_count must be between {MIN_DIGITS} and {MAX_DIGITS}")
        if not isinstance(self.digest_algorithm, DigestAlgorithm):
            raise InvalidParametersError("digest_algorithm must be a DigestAlgorithm")

    def adjusted_time(self, now: int) -> int:
        return now + self.time_offset


@dataclass(frozen=True, slots=True)
class OtpResult:
    code: str
    counter: int
    digest_algorithm: DigestAlgorithm
