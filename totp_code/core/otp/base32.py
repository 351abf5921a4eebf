"""Strict base32 validation and decoding for TOTP secrets.

Accepts the RFC 4648 alphabet case-insensitively, and additionally reads
the commonly mistyped numerals ``0``, ``1`` and ``8`` as ``O``, ``L`` and
``B``. Padding is optional, but when present it must complete the final
8-symbol group and run uninterrupted to the end of the input.
"""

from __future__ import annotations

from typing import Final

from totp_code.core.errors import BufferTooSmallError, InvalidPaddingError, InvalidSymbolError

PAD: Final[int] = ord("=")
ALPHABET: Final[str] = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

_VALID_RESIDUES: Final[frozenset[int]] = frozenset({0, 2, 4, 5, 7})
_CONFUSABLES: Final[dict[str, str]] = {"0": "O", "1": "L", "8": "B"}


def _build_symbol_map() -> tuple[int, ...]:
    table = [-1] * 256
    for value, char in enumerate(ALPHABET):
        table[ord(char)] = value
        table[ord(char.lower())] = value
    for numeral, letter in _CONFUSABLES.items():
        table[ord(numeral)] = ALPHABET.index(letter)
    return tuple(table)


_SYMBOLS: Final[tuple[int, ...]] = _build_symbol_map()

Base32Input = bytes | bytearray | memoryview | str


def _as_bytes(src: Base32Input) -> bytes:
    if isinstance(src, str):
        try:
            return src.encode("ascii")
        except UnicodeEncodeError as exc:
            raise InvalidSymbolError(
                f"invalid base32 symbol at position {exc.start}",
                position=exc.start,
            ) from exc
    return bytes(src)


def _unpadded_length(data: bytes) -> int:
    total = len(data)
    for pos, byte in enumerate(data):
        if byte == PAD:
            _check_padding(data, pos)
            unpadded = pos
            break
        if _SYMBOLS[byte] < 0:
            raise InvalidSymbolError(f"invalid base32 symbol at position {pos}", position=pos)
    else:
        unpadded = total

    if unpadded % 8 not in _VALID_RESIDUES:
        raise InvalidPaddingError(
            f"base32 data ends with an incomplete group of {unpadded % 8} symbols",
            position=unpadded,
        )
    return unpadded


def _check_padding(data: bytes, start: int) -> None:
    if start % 8 < 2:
        raise InvalidPaddingError(f"padding may not start at position {start}", position=start)
    if start + (8 - start % 8) != len(data):
        raise InvalidPaddingError("padding must complete the final group", position=start)
    for pos in range(start, len(data)):
        if data[pos] != PAD:
            raise InvalidPaddingError(f"unexpected symbol after padding at position {pos}", position=pos)


def verify(src: Base32Input) -> int:
    """Validate base32 text and return the number of bytes it decodes to."""
    return (_unpadded_length(_as_bytes(src)) * 5) // 8


def decode_into(dst: bytearray | memoryview | None, src: Base32Input) -> int:
    """Decode `src` into `dst` and return the decoded length.

    Passing ``dst=None`` only validates and reports the required size.
    """
    data = _as_bytes(src)
    required = (_unpadded_length(data) * 5) // 8
    if dst is None:
        return required
    if required > len(dst):
        raise BufferTooSmallError(
            f"destination holds {len(dst)} bytes, {required} required",
            required=required,
        )

    written = 0
    buffer = 0
    bits = 0
    for byte in data:
        if byte == PAD:
            break
        buffer = (buffer << 5) | _SYMBOLS[byte]
        bits += 5
        if bits >= 8:
            bits -= 8
            dst[written] = (buffer >> bits) & 0xFF
            written += 1
            buffer &= (1 << bits) - 1
    return written


def decode(src: Base32Input) -> bytes:
    buffer = bytearray(verify(src))
    written = decode_into(buffer, src)
    return bytes(buffer[:written])
