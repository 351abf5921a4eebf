from __future__ import annotations

import logging
import time
from functools import lru_cache

from totp_code.core.cache.replay import ReplayCache
from totp_code.core.config.settings import Settings, get_settings
from totp_code.core.errors import (
    Base32Error,
    BufferTooSmallError,
    CalculationError,
    CalculatorError,
    CodeReusedError,
    InvalidCodeError,
    MissingCacheKeyError,
    SecretDecodeError,
    TotpCodeError,
)
from totp_code.core.metrics import Metrics, get_metrics
from totp_code.core.otp import base32
from totp_code.core.otp.algorithms import algorithm_name
from totp_code.core.otp.calculator import HmacFunc, calculate, verify_totp_code
from totp_code.core.otp.types import OtpResult, TotpParameters
from totp_code.core.utils.time import Clock, now_epoch
from totp_code.modules.totp.resolver import AttributeParameterResolver, ParameterResolver, resolve_secret
from totp_code.modules.totp.types import RequestContext

logger = logging.getLogger(__name__)

SecretInput = bytes | bytearray | str


class TotpCodeService:
    """Generate and verify TOTP codes, tracking accepted windows per identity.

    The replay cache is the only state kept between calls, so one instance
    can be shared by every worker thread.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        resolver: ParameterResolver | None = None,
        cache: ReplayCache | None = None,
        metrics: Metrics | None = None,
        hmac_func: HmacFunc | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if metrics is None and self._settings.metrics_enabled:
            metrics = get_metrics()
        self._metrics = metrics
        self._resolver = resolver or AttributeParameterResolver(self._settings)
        self._cache = cache if cache is not None else ReplayCache(metrics=metrics)
        self._hmac_func = hmac_func
        self._clock = clock or now_epoch

    @property
    def cache(self) -> ReplayCache:
        return self._cache

    def generate(
        self,
        secret: SecretInput,
        *,
        parameters: TotpParameters,
        is_binary: bool = False,
        now: int | None = None,
        identity_key: bytes | None = None,
        reuse_allowed: bool | None = None,
    ) -> str:
        if reuse_allowed is None:
            reuse_allowed = self._settings.allow_reuse
        started = time.perf_counter()
        try:
            key = self._secret_bytes(secret, is_binary)
            if now is None:
                now = self._clock()
            adjusted_now = parameters.adjusted_time(now)
            result = self._calculate(parameters, key, adjusted_now)
            if not reuse_allowed:
                if not identity_key:
                    raise MissingCacheKeyError("reuse prevention requires an identity key")
                self._cache.update(
                    identity_key,
                    adjusted_now - parameters.time_origin,
                    parameters.time_step,
                    now=now,
                )
        except TotpCodeError as exc:
            self._observe_error(exc)
            raise

        if self._settings.devel_debug:
            _log_debug(parameters, key, adjusted_now, result)
        logger.debug(
            "totp_code_generated algorithm=%s counter=%s",
            algorithm_name(result.digest_algorithm),
            result.counter,
        )
        if self._metrics is not None:
            self._metrics.observe_code_generated(
                algorithm_name(result.digest_algorithm),
                time.perf_counter() - started,
            )
        return result.code

    def generate_for_request(
        self,
        secret_expression: str,
        context: RequestContext,
        *,
        now: int | None = None,
    ) -> str:
        try:
            secret = resolve_secret(secret_expression, context)
            resolved = self._resolver.resolve(context)
        except TotpCodeError as exc:
            self._observe_error(exc)
            raise
        return self.generate(
            secret.value,
            parameters=resolved.parameters,
            is_binary=secret.is_binary,
            now=now,
            identity_key=resolved.identity_key,
        )

    def verify(
        self,
        code: str,
        secret: SecretInput,
        *,
        parameters: TotpParameters,
        is_binary: bool = False,
        now: int | None = None,
        identity_key: bytes | None = None,
        reuse_allowed: bool | None = None,
    ) -> int:
        """Check `code` against the current window and return its counter.

        When reuse is disallowed the identity's window is claimed atomically,
        so a second acceptance within the same window raises CodeReusedError.
        """
        if reuse_allowed is None:
            reuse_allowed = self._settings.allow_reuse
        try:
            key = self._secret_bytes(secret, is_binary)
            if now is None:
                now = self._clock()
            adjusted_now = parameters.adjusted_time(now)
            try:
                verification = verify_totp_code(
                    parameters,
                    key,
                    code,
                    adjusted_now=adjusted_now,
                    hmac_func=self._hmac_func,
                )
            except CalculatorError as exc:
                raise CalculationError(f"{exc.code}: {exc}") from exc
            if not verification.is_valid or verification.matched_counter is None:
                self._observe_verification("rejected")
                raise InvalidCodeError("Invalid TOTP code")
            if not reuse_allowed:
                if not identity_key:
                    raise MissingCacheKeyError("reuse prevention requires an identity key")
                window_time = adjusted_now - parameters.time_origin
                if not self._cache.claim(identity_key, window_time, parameters.time_step, now=now):
                    self._observe_verification("reused")
                    raise CodeReusedError("TOTP code was already used in this time window")
        except TotpCodeError as exc:
            self._observe_error(exc)
            raise

        self._observe_verification("accepted")
        return verification.matched_counter

    def verify_for_request(
        self,
        code: str,
        secret_expression: str,
        context: RequestContext,
        *,
        now: int | None = None,
    ) -> int:
        try:
            secret = resolve_secret(secret_expression, context)
            resolved = self._resolver.resolve(context)
        except TotpCodeError as exc:
            self._observe_error(exc)
            raise
        return self.verify(
            code,
            secret.value,
            parameters=resolved.parameters,
            is_binary=secret.is_binary,
            now=now,
            identity_key=resolved.identity_key,
        )

    def close(self) -> None:
        size = len(self._cache)
        self._cache.clear()
        logger.info("totp_code_service_closed released_entries=%s", size)

    def _secret_bytes(self, secret: SecretInput, is_binary: bool) -> bytes:
        if is_binary:
            if isinstance(secret, str):
                raise SecretDecodeError("binary secrets must be bytes")
            key = bytes(secret)
        else:
            try:
                buffer = bytearray(base32.verify(secret))
                written = base32.decode_into(buffer, secret)
            except (Base32Error, BufferTooSmallError) as exc:
                raise SecretDecodeError(f"invalid base32 secret ({exc.code}: {exc})") from exc
            key = bytes(buffer[:written])
        if not key:
            raise SecretDecodeError("secret is empty")
        return key

    def _calculate(self, parameters: TotpParameters, key: bytes, adjusted_now: int) -> OtpResult:
        try:
            return calculate(parameters, key, adjusted_now, hmac_func=self._hmac_func)
        except CalculatorError as exc:
            raise CalculationError(f"{exc.code}: {exc}") from exc

    def _observe_error(self, exc: TotpCodeError) -> None:
        logger.info("totp_code_failed error=%s message=%s", exc.code, exc)
        if self._metrics is not None:
            self._metrics.observe_error(exc.code)

    def _observe_verification(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.observe_verification(outcome)


def _log_debug(parameters: TotpParameters, key: bytes, adjusted_now: int, result: OtpResult) -> None:
    logger.info("totp_code: totp_algo:         %s", algorithm_name(result.digest_algorithm))
    logger.info("totp_code: totp_time:         %s", adjusted_now - parameters.time_offset)
    logger.info("totp_code: totp_time_offset:  %s", parameters.time_offset)
    logger.info("totp_code: totp_t0:           %s", parameters.time_origin)
    logger.info("totp_code: totp_x:            %s", parameters.time_step)
    logger.info("totp_code: totp_t:            %s", result.counter)
    logger.info("totp_code: key:               <binary>")
    logger.info("totp_code: key_len:           %s", len(key))
    logger.info("totp_code: result:            %s", result.code)
    logger.info("totp_code: result_len:        %s", parameters.digit_count)


@lru_cache(maxsize=1)
def get_totp_code_service() -> TotpCodeService:
    return TotpCodeService()
