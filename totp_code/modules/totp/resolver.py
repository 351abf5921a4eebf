from __future__ import annotations

import logging
import re
from typing import Final, Mapping, Protocol

from totp_code.core.config.settings import Settings
from totp_code.core.errors import InvalidOverrideError, SecretReferenceError
from totp_code.core.otp.algorithms import parse_algorithm
from totp_code.core.otp.types import TotpParameters
from totp_code.modules.totp.types import (
    AttributeScope,
    AttributeValue,
    RequestContext,
    ResolvedRequest,
    ResolvedSecret,
)

logger = logging.getLogger(__name__)

_UNSIGNED_RE: Final[re.Pattern[str]] = re.compile(r"\+?[0-9]+")
_SIGNED_RE: Final[re.Pattern[str]] = re.compile(r"[+-]?[0-9]+")
_IDENTITY_SCOPES: Final[tuple[AttributeScope, ...]] = (
    AttributeScope.REQUEST,
    AttributeScope.CONTROL,
    AttributeScope.REPLY,
)


class ParameterResolver(Protocol):
    def resolve(self, context: RequestContext) -> ResolvedRequest: ...


class AttributeParameterResolver:
    """Layer per-request attribute overrides over the configured defaults.

    Overrides are read from the control list and only when
    ``allow_override`` is enabled. The identity key is looked up in the
    request, control and reply lists, in that order.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def resolve(self, context: RequestContext) -> ResolvedRequest:
        return ResolvedRequest(
            parameters=self._parameters(context),
            identity_key=self._identity_key(context),
        )

    def _parameters(self, context: RequestContext) -> TotpParameters:
        settings = self._settings
        defaults = settings.default_parameters()
        if not settings.allow_override:
            return defaults

        control = context.control
        algorithm = defaults.digest_algorithm
        if settings.algorithm_attribute is not None:
            raw = control.get(settings.algorithm_attribute)
            if isinstance(raw, str):
                parsed = parse_algorithm(raw)
                if parsed is not None:
                    algorithm = parsed
                else:
                    logger.debug("totp_algorithm_override_ignored value=%s", raw)

        return TotpParameters(
            time_origin=_unsigned(control, settings.unix_time_attribute, defaults.time_origin),
            time_step=_unsigned(control, settings.time_step_attribute, defaults.time_step),
            time_offset=_signed(control, settings.time_offset_attribute, defaults.time_offset),
            digest_algorithm=algorithm,
            digit_count=_unsigned(control, settings.otp_length_attribute, defaults.digit_count),
        )

    def _identity_key(self, context: RequestContext) -> bytes | None:
        name = self._settings.cache_key_attribute
        if name is None:
            return None
        for scope in _IDENTITY_SCOPES:
            value = context.attributes(scope).get(name)
            if value is None:
                continue
            if isinstance(value, bytes):
                key = value
            elif isinstance(value, str):
                key = value.encode("utf-8")
            else:
                key = str(value).encode("ascii")
            return key or None
        return None


def resolve_secret(expression: str, context: RequestContext) -> ResolvedSecret:
    """Resolve a literal base32 secret or an ``&[scope:]Attribute`` reference."""
    tokens = expression.split()
    if len(tokens) != 1:
        raise SecretReferenceError("expected exactly one secret or attribute reference")
    token = tokens[0]
    if not token.startswith("&"):
        return ResolvedSecret(value=token.encode("utf-8"), is_binary=False)

    scope_name, sep, name = token[1:].partition(":")
    if not sep:
        scope, name = AttributeScope.CONTROL, scope_name
    else:
        try:
            scope = AttributeScope(scope_name.lower())
        except ValueError as exc:
            raise SecretReferenceError(f"unknown attribute scope '{scope_name}'") from exc
    if not name:
        raise SecretReferenceError("attribute reference is missing a name")

    value = context.attributes(scope).get(name)
    if value is None:
        raise SecretReferenceError(f"referenced attribute '{name}' is not set")
    if isinstance(value, bytes):
        return ResolvedSecret(value=value, is_binary=True)
    if isinstance(value, str):
        return ResolvedSecret(value=value.encode("utf-8"), is_binary=False)
    raise SecretReferenceError(f"{name} is not a string or octets")


def _unsigned(control: Mapping[str, AttributeValue], attribute: str | None, default: int) -> int:
    value = _integer(control, attribute, default, _UNSIGNED_RE)
    if value < 0:
        raise InvalidOverrideError(f"{attribute} must not be negative", attribute=attribute)
    return value


def _signed(control: Mapping[str, AttributeValue], attribute: str | None, default: int) -> int:
    return _integer(control, attribute, default, _SIGNED_RE)


def _integer(
    control: Mapping[str, AttributeValue],
    attribute: str | None,
    default: int,
    pattern: re.Pattern[str],
) -> int:
    if attribute is None:
        return default
    value = control.get(attribute)
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidOverrideError(f"{attribute} is not an integer attribute", attribute=attribute)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and pattern.fullmatch(value):
        return int(value)
    raise InvalidOverrideError(f"{attribute} is not an integer attribute", attribute=attribute)
