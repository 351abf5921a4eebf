from __future__ import annotations

import argparse
import logging.config
import sys

from totp_code.core.config.settings import Settings, get_settings
from totp_code.core.config.startup_log import log_startup_config
from totp_code.core.errors import InvalidParametersError, TotpCodeError
from totp_code.core.otp.algorithms import DigestAlgorithm, parse_algorithm
from totp_code.core.otp.calculator import generate_totp_secret
from totp_code.core.otp.types import TotpParameters
from totp_code.modules.totp.service import TotpCodeService


def _build_log_config(settings: Settings) -> dict:
    # Only the `totp_code.*` namespace gets a handler; the root logger stays quiet.
    if settings.devel_debug:
        level = "DEBUG"
    elif settings.startup_log_config:
        level = "INFO"
    else:
        level = "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "totp_code": {
                "handlers": ["default"],
                "level": level,
                "propagate": False,
            },
        },
    }


def _add_parameter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("secret", help="Base32 secret, or a hex string with --hex.")
    parser.add_argument("--hex", action="store_true", help="Treat SECRET as hex-encoded raw bytes.")
    parser.add_argument("--now", type=int, default=None, help="Unix time to use instead of the clock.")
    parser.add_argument(
        "--identity",
        default=None,
        help="Identity key for the replay cache; the cache lasts only for this invocation.",
    )
    parser.add_argument("--algorithm", default=None, help="sha1, sha224, sha256, sha384 or sha512.")
    parser.add_argument("--digits", type=int, default=None)
    parser.add_argument("--time-step", type=int, default=None)
    parser.add_argument("--unix-time", type=int, default=None, help="Time origin (t0) in Unix seconds.")
    parser.add_argument("--time-offset", type=int, default=None, help="Signed clock adjustment in seconds.")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="totp-code", description="Generate and check TOTP codes.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Print the code for the current time window.")
    _add_parameter_args(generate)

    verify = subparsers.add_parser("verify", help="Check a code; exits 1 when it is rejected.")
    _add_parameter_args(verify)
    verify.add_argument("code")

    secret = subparsers.add_parser("secret", help="Print a new random base32 secret.")
    secret.add_argument("--bytes", type=int, default=20, help="Secret length in bytes (default: 20).")

    return parser.parse_args(argv)


def _parameters(args: argparse.Namespace, settings: Settings) -> TotpParameters:
    defaults = settings.default_parameters()
    algorithm: DigestAlgorithm = defaults.digest_algorithm
    if args.algorithm is not None:
        parsed = parse_algorithm(args.algorithm)
        if parsed is None:
            raise InvalidParametersError(f"unknown algorithm '{args.algorithm}'")
        algorithm = parsed
    return TotpParameters(
        time_origin=defaults.time_origin if args.unix_time is None else args.unix_time,
        time_step=defaults.time_step if args.time_step is None else args.time_step,
        time_offset=defaults.time_offset if args.time_offset is None else args.time_offset,
        digest_algorithm=algorithm,
        digit_count=defaults.digit_count if args.digits is None else args.digits,
    )


def _secret(args: argparse.Namespace) -> bytes:
    if not args.hex:
        return args.secret.encode("utf-8")
    try:
        return bytes.fromhex(args.secret)
    except ValueError as exc:
        raise SystemExit(f"error=invalid_hex message={exc}") from exc


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    logging.config.dictConfig(_build_log_config(settings))
    log_startup_config(settings)

    if args.command == "secret":
        if args.bytes <= 0:
            raise SystemExit("--bytes must be > 0")
        print(generate_totp_secret(args.bytes))
        return 0

    service = TotpCodeService(settings)
    identity = args.identity.encode("utf-8") if args.identity else None
    try:
        parameters = _parameters(args, settings)
        if args.command == "generate":
            code = service.generate(
                _secret(args),
                parameters=parameters,
                is_binary=args.hex,
                now=args.now,
                identity_key=identity,
                reuse_allowed=identity is None,
            )
            print(code)
            return 0

        counter = service.verify(
            args.code,
            _secret(args),
            parameters=parameters,
            is_binary=args.hex,
            now=args.now,
            identity_key=identity,
            reuse_allowed=identity is None,
        )
        print(f"accepted counter={counter}")
        return 0
    except TotpCodeError as exc:
        print(f"error={exc.code} message={exc}", file=sys.stderr)
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    raise SystemExit(main())
