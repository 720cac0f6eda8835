"""Pre-flight checks for a broker deployment.

Commands:

``check``
    Load ``AppSettings`` from the given ``.env`` file and report missing or
    malformed OAuth client settings. The token database directory is created
    when absent.
``record`` / ``verify``
    Run ``check``, then store or compare a SHA256 fingerprint of the ``.env``
    file so edits between deploys are noticed.
``tokens``
    Run ``check``, then open the token database and confirm every stored
    record still decrypts with ``TOKEN_ENCRYPTION_SECRET`` or one of
    ``TOKEN_ENCRYPTION_PREVIOUS_SECRETS``. ``--rotate`` rewrites readable
    records under the current secret so the previous ones can be retired.

Example usages::

    python -m scripts.check_env record --env-file /opt/site-auth/.env \
        --hash-file /opt/site-auth/.env.sha256
    python -m scripts.check_env tokens --env-file /opt/site-auth/.env --rotate
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path

from pydantic import ValidationError

from site_auth.clients.sqlite_store import SQLiteStore
from site_auth.core.config import AppSettings, _load_env_file
from site_auth.services.token_cipher import TokenCipherService
from site_auth.services.token_store import TokenStore

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_TOKEN_ERROR = 4
EXIT_RUNTIME_ERROR = 5


class CheckFailed(Exception):
    """Raised by a command step with the exit code to report."""

    def __init__(self, message: str, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def _fingerprint(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def load_settings(env_file: Path) -> AppSettings:
    """Load settings from ``env_file`` and prepare the token database directory."""
    if not env_file.is_file():
        raise CheckFailed(f"Environment file {env_file} not found.", EXIT_RUNTIME_ERROR)
    _load_env_file(str(env_file))
    try:
        settings = AppSettings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise CheckFailed(
            f"Invalid broker settings in {env_file}:\n{exc.json(indent=2)}",
            EXIT_VALIDATION_ERROR,
        ) from exc

    Path(settings.token_db_path).parent.mkdir(parents=True, exist_ok=True)
    if not settings.security.token_encryption_secret:
        print(
            "warning: TOKEN_ENCRYPTION_SECRET is unset; tokens are encrypted with a "
            "key derived from GOOGLE_CLIENT_SECRET.",
            file=sys.stderr,
        )
    return settings


def cmd_check(args: argparse.Namespace, settings: AppSettings) -> int:
    print(f"Settings OK (environment={settings.environment}, origin={settings.origin}).")
    return EXIT_OK


def cmd_record(args: argparse.Namespace, settings: AppSettings) -> int:
    digest = _fingerprint(args.env_file)
    args.hash_file.write_text(f"{digest}\n", encoding="utf-8")
    print(f"Recorded {digest} to {args.hash_file}.")
    return EXIT_OK


def cmd_verify(args: argparse.Namespace, settings: AppSettings) -> int:
    if not args.hash_file.is_file():
        raise CheckFailed(
            f"No baseline at {args.hash_file}; run 'record' first.", EXIT_RUNTIME_ERROR
        )
    recorded = args.hash_file.read_text(encoding="utf-8").strip()
    current = _fingerprint(args.env_file)
    if recorded != current:
        raise CheckFailed(
            f"{args.env_file} changed since the baseline was recorded "
            f"(recorded {recorded}, now {current}).",
            EXIT_CHECKSUM_ERROR,
        )
    print("Environment fingerprint matches the baseline.")
    return EXIT_OK


def cmd_tokens(args: argparse.Namespace, settings: AppSettings) -> int:
    security = settings.security
    cipher = TokenCipherService(
        secret=security.token_encryption_secret or settings.google.client_secret,
        previous_secrets=security.previous_token_encryption_secrets,
    )
    store = TokenStore(SQLiteStore(settings.token_db_path), cipher)
    readable, unreadable = store.audit_encryption(rewrite=args.rotate)
    action = "re-encrypted" if args.rotate else "readable"
    print(f"{readable} stored tokens {action}.")
    if unreadable:
        raise CheckFailed(
            "Tokens no configured secret can decrypt: " + ", ".join(unreadable),
            EXIT_TOKEN_ERROR,
        )
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pre-flight checks for the site auth broker.")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Environment file to validate (default: ./.env).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("check", help="Validate settings only.").set_defaults(handler=cmd_check)
    for name, handler, help_text in (
        ("record", cmd_record, "Validate settings and write the .env fingerprint."),
        ("verify", cmd_verify, "Validate settings and compare the .env fingerprint."),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("--hash-file", type=Path, required=True)
        sub.set_defaults(handler=handler)

    tokens = commands.add_parser("tokens", help="Confirm stored tokens decrypt.")
    tokens.add_argument(
        "--rotate",
        action="store_true",
        help="Rewrite readable tokens under the current encryption secret.",
    )
    tokens.set_defaults(handler=cmd_tokens)

    # Accept --env-file after the command name as well.
    for sub in commands.choices.values():
        sub.add_argument("--env-file", type=Path, default=argparse.SUPPRESS)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        settings = load_settings(args.env_file)
        return args.handler(args, settings)
    except CheckFailed as exc:
        print(str(exc), file=sys.stderr)
        return exc.exit_code
    except OSError as exc:
        print(f"check_env failed: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
