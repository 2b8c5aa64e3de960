"""
Run configuration built from command-line arguments and environment.
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytz

from github_api import DEFAULT_BASE_URL
from serializers import FORMATS

NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class ConfigError(ValueError):
    """Invalid command-line or environment configuration"""
    pass


def parse_since(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ConfigError(f"--since is not an ISO-8601 timestamp: {value}")
    if parsed.tzinfo is None:
        return pytz.UTC.localize(parsed)
    return parsed.astimezone(pytz.UTC)


@dataclass(frozen=True)
class FetchConfig:
    owner: str
    repo: str
    token: str
    output_directory: Path
    fmt: str = "msgpack"
    since: Optional[datetime] = None
    max_workers: int = 8
    rate: int = 20
    api_url: str = DEFAULT_BASE_URL
    include_repository: bool = True
    progress: bool = True
    verbose: bool = False

    @property
    def repo_output_dir(self) -> Path:
        return self.output_directory / self.owner / self.repo

    def __repr__(self):
        # Keep the token out of logs and tracebacks
        return f"FetchConfig(owner={self.owner!r}, repo={self.repo!r}, output_directory={str(self.output_directory)!r}, fmt={self.fmt!r})"

    @classmethod
    def from_args(cls, args, environ=None) -> "FetchConfig":
        """
        Validate parsed arguments into a configuration.

        The token and API URL fall back to GITHUB_TOKEN and GITHUB_API_URL.

        Raises:
            ConfigError: If a value is missing or malformed
        """
        environ = os.environ if environ is None else environ

        owner = (args.owner or "").strip()
        repo = (args.repository or "").strip()
        for label, value in (("owner", owner), ("repository", repo)):
            if not value:
                raise ConfigError(f"{label} cannot be empty")
            if not NAME_PATTERN.match(value):
                raise ConfigError(f"Invalid {label} name: {value}")

        token = (args.token or environ.get("GITHUB_TOKEN", "")).strip()
        if not token:
            raise ConfigError("A GitHub token is required (-t/--token or GITHUB_TOKEN)")

        if not args.output_directory:
            raise ConfigError("output-directory cannot be empty")

        fmt = getattr(args, "format", "msgpack")
        if fmt not in FORMATS:
            raise ConfigError(f"Unknown output format: {fmt}")

        since = parse_since(args.since) if getattr(args, "since", None) else None

        max_workers = getattr(args, "max_workers", 8)
        rate = getattr(args, "rate", 20)
        if max_workers < 1:
            raise ConfigError("--max-workers must be at least 1")
        if rate < 1:
            raise ConfigError("--rate must be at least 1")

        api_url = getattr(args, "api_url", None) or environ.get("GITHUB_API_URL") or DEFAULT_BASE_URL

        return cls(
            owner=owner,
            repo=repo,
            token=token,
            output_directory=Path(args.output_directory),
            fmt=fmt,
            since=since,
            max_workers=max_workers,
            rate=rate,
            api_url=api_url.rstrip("/"),
            include_repository=not getattr(args, "skip_repository", False),
            progress=not getattr(args, "no_progress", False),
            verbose=getattr(args, "verbose", False),
        )
