"""Configuration for the WaterSmart portal client.

Values are resolved once at startup into a single :class:`PortalConfig` and
passed into the client. Precedence: command line, then ``--config`` file
(YAML/JSON), then environment variables (optionally loaded from a ``.env``
file), then defaults.
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import yaml
from dotenv import load_dotenv

from portal_errors import ConfigurationError

LOGIN_URL = "https://austintx.watersmart.com/index.php/logout/login?forceEmail=1"
DEFAULT_OUTPUT = "download.csv"
DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_MAX_REDIRECTS = 20

ENV_EMAIL = "WATERSMART_EMAIL"
ENV_PASSWORD = "WATERSMART_PASSWORD"
ENV_AUTH_SESSION = "WATERSMART_AUTH_SESSION"
ENV_DOWNLOAD_URL = "WATERSMART_DOWNLOAD_URL"


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str
    auth_token: str

    def missing_fields(self) -> List[str]:
        return [name for name in ("email", "password", "auth_token") if not getattr(self, name)]

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***', auth_token='***')"


@dataclass(frozen=True)
class PortalConfig:
    credentials: Credentials
    download_url: str
    login_url: str = LOGIN_URL
    output_path: Optional[Path] = Path(DEFAULT_OUTPUT)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_redirects: int = DEFAULT_MAX_REDIRECTS


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw)
        elif suffix == ".json":
            data = json.loads(raw)
        else:
            raise ConfigurationError("Unsupported config file extension. Use .yaml/.yml or .json.")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a mapping/object.")
    return data


def flatten_config(data: Dict[str, Any]) -> Dict[str, Any]:
    flattened: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for nested_key, nested_value in value.items():
                flattened[f"{key}_{nested_key}"] = nested_value
        else:
            flattened[key] = value
    return flattened


def _coerce_config_number(value: object, key: str, cast: Callable[[Any], Any]) -> Any:
    if isinstance(value, bool):
        raise ConfigurationError(f"Config key '{key}' must be a number.")
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Config key '{key}' must be a number.") from exc


def config_to_parser_defaults(config_data: Dict[str, Any]) -> Dict[str, Any]:
    cfg = flatten_config(config_data)
    defaults: Dict[str, Any] = {}

    str_map = {
        "email": "email",
        "portal_email": "email",
        "password": "password",
        "portal_password": "password",
        "auth_token": "auth_token",
        "auth_session": "auth_token",
        "portal_auth_token": "auth_token",
        "portal_auth_session": "auth_token",
        "download_url": "download_url",
        "portal_download_url": "download_url",
        "download_file_url": "download_url",
        "login_url": "login_url",
        "portal_login_url": "login_url",
        "output": "output",
        "download_output": "output",
        "log_level": "log_level",
        "logging_level": "log_level",
    }
    for source_key, target_key in str_map.items():
        if source_key in cfg and cfg[source_key] is not None:
            defaults[target_key] = str(cfg[source_key])

    number_map = {
        "timeout_seconds": ("timeout_seconds", float),
        "portal_timeout_seconds": ("timeout_seconds", float),
        "download_timeout_seconds": ("timeout_seconds", float),
        "max_redirects": ("max_redirects", int),
        "portal_max_redirects": ("max_redirects", int),
    }
    for source_key, (target_key, cast) in number_map.items():
        if source_key in cfg:
            defaults[target_key] = _coerce_config_number(cfg[source_key], source_key, cast)
    return defaults


def load_env_file(env_file: Optional[str]) -> Optional[Path]:
    """Load ``KEY=value`` pairs into the environment without overriding real variables."""
    if env_file:
        path = Path(env_file)
        if not path.is_file():
            raise ConfigurationError(f"Env file not found: {path}")
    else:
        path = Path(".env")
        if not path.is_file():
            return None
    load_dotenv(path, override=False)
    return path


def add_portal_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to YAML/JSON config file.")
    parser.add_argument("--env-file", help="Path to a .env file. Defaults to ./.env when present.")
    parser.add_argument("--email", help=f"Portal account email. Falls back to {ENV_EMAIL}.")
    parser.add_argument("--password", help=f"Portal account password. Falls back to {ENV_PASSWORD}.")
    parser.add_argument(
        "--auth-token",
        help=f"Long-lived auth_session cookie value. Falls back to {ENV_AUTH_SESSION}.",
    )
    parser.add_argument("--download-url", help=f"Usage CSV download URL. Falls back to {ENV_DOWNLOAD_URL}.")
    parser.add_argument("--login-url", default=LOGIN_URL, help="Portal login endpoint.")
    parser.add_argument("--output", default=DEFAULT_OUTPUT, help="Where to save the downloaded CSV.")
    parser.add_argument("--no-save", action="store_true", help="Keep the downloaded CSV in memory only.")
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Per-request HTTP timeout in seconds.",
    )
    parser.add_argument(
        "--max-redirects",
        type=int,
        default=DEFAULT_MAX_REDIRECTS,
        help="Maximum redirect hops per request chain before giving up.",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable the download progress bar.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")


def parse_portal_args(
    description: Optional[str],
    argv: Optional[Sequence[str]] = None,
    extra_arguments: Optional[Callable[[argparse.ArgumentParser], None]] = None,
) -> argparse.Namespace:
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config", help="Path to YAML/JSON config file.")
    pre_args, _ = pre_parser.parse_known_args(argv)
    config_defaults: Dict[str, Any] = {}
    if pre_args.config:
        config_defaults = config_to_parser_defaults(load_config_file(Path(pre_args.config)))

    parser = argparse.ArgumentParser(description=description)
    add_portal_arguments(parser)
    if extra_arguments is not None:
        extra_arguments(parser)
    parser.set_defaults(**config_defaults)
    return parser.parse_args(argv)


def portal_config_from_args(
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]] = None,
) -> PortalConfig:
    if environ is None:
        load_env_file(getattr(args, "env_file", None))
        environ = os.environ

    email = args.email or environ.get(ENV_EMAIL, "")
    password = args.password or environ.get(ENV_PASSWORD, "")
    auth_token = args.auth_token or environ.get(ENV_AUTH_SESSION, "")
    download_url = args.download_url or environ.get(ENV_DOWNLOAD_URL, "")

    missing = [
        flag
        for flag, value in (
            (f"--email/{ENV_EMAIL}", email),
            (f"--password/{ENV_PASSWORD}", password),
            (f"--auth-token/{ENV_AUTH_SESSION}", auth_token),
            (f"--download-url/{ENV_DOWNLOAD_URL}", download_url),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError("Missing required settings: " + ", ".join(missing))

    if args.timeout_seconds is None or args.timeout_seconds <= 0:
        raise ConfigurationError("--timeout-seconds must be greater than 0.")
    if args.max_redirects is None or args.max_redirects < 0:
        raise ConfigurationError("--max-redirects must be 0 or a positive integer.")

    output_path = None if args.no_save or not args.output else Path(args.output)
    return PortalConfig(
        credentials=Credentials(email=email, password=password, auth_token=auth_token),
        download_url=download_url,
        login_url=args.login_url or LOGIN_URL,
        output_path=output_path,
        timeout_seconds=float(args.timeout_seconds),
        max_redirects=int(args.max_redirects),
    )
