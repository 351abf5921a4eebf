from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from totp_code.core.otp.algorithms import DigestAlgorithm, parse_algorithm
from totp_code.core.otp.types import MAX_DIGITS, MIN_DIGITS, MIN_TIME_STEP, TotpParameters

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOTP_CODE_",
        env_file=(BASE_DIR / ".env", BASE_DIR / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Instance defaults; per-request overrides are layered on top when allowed.
    unix_time: int = Field(default=0, ge=0)
    time_step: int = Field(default=30, ge=MIN_TIME_STEP)
    time_offset: int = 0
    otp_length: int = Field(default=6, ge=MIN_DIGITS, le=MAX_DIGITS)
    algorithm: DigestAlgorithm = DigestAlgorithm.SHA1
    allow_reuse: bool = False
    allow_override: bool = False
    devel_debug: bool = False

    # Request attributes consulted by the attribute resolver.
    cache_key_attribute: str | None = "User-Name"
    time_offset_attribute: str | None = "TOTP-Time-Offset"
    unix_time_attribute: str | None = None
    time_step_attribute: str | None = None
    otp_length_attribute: str | None = None
    algorithm_attribute: str | None = None

    startup_log_config: bool = False
    metrics_enabled: bool = True

    @field_validator("algorithm", mode="before")
    @classmethod
    def _parse_algorithm(cls, value: object) -> DigestAlgorithm:
        if isinstance(value, DigestAlgorithm):
            return value
        if not isinstance(value, str):
            raise ValueError("algorithm must be a string")
        algorithm = parse_algorithm(value)
        if algorithm is None:
            logger.warning('Ignoring "algorithm = %s", forcing to "algorithm = sha1"', value)
            return DigestAlgorithm.SHA1
        return algorithm

    @field_validator(
        "cache_key_attribute",
        "time_offset_attribute",
        "unix_time_attribute",
        "time_step_attribute",
        "otp_length_attribute",
        "algorithm_attribute",
        mode="before",
    )
    @classmethod
    def _blank_attribute_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def default_parameters(self) -> TotpParameters:
        return TotpParameters(
            time_origin=self.unix_time,
            time_step=self.time_step,
            time_offset=self.time_offset,
            digest_algorithm=self.algorithm,
            digit_count=self.otp_length,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
