from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from totp_code.core.otp.types import TotpParameters

AttributeValue = str | int | bytes


class AttributeScope(str, Enum):
    CONTROL = "control"
    REPLY = "reply"
    REQUEST = "request"


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Attribute lists of one inbound authentication request."""

    request: Mapping[str, AttributeValue] = field(default_factory=dict)
    control: Mapping[str, AttributeValue] = field(default_factory=dict)
    reply: Mapping[str, AttributeValue] = field(default_factory=dict)

    def attributes(self, scope: AttributeScope) -> Mapping[str, AttributeValue]:
        match scope:
            case AttributeScope.REQUEST:
                return self.request
            case AttributeScope.REPLY:
                return self.reply
            case _:
                return self.control


@dataclass(frozen=True, slots=True)
class ResolvedRequest:
    parameters: TotpParameters
    identity_key: bytes | None


@dataclass(frozen=True, slots=True)
class ResolvedSecret:
    value: bytes
    is_binary: bool
