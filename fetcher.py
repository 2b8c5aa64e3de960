import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytz
from tqdm import tqdm

from fetch_config import FetchConfig
from github_api import USER_AGENT, GitHubAPI
from serializers import output_filename, serialize_to_file
from throttle import ThrottlePool

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    issue_count: int = 0
    pull_count: int = 0
    files: Dict[str, Path] = field(default_factory=dict)
    duration_seconds: float = 0.0


def is_pull_request(issue: Dict[str, Any]) -> bool:
    return issue.get("pull_request") is not None


class GitHubDataFetcher:
    """Download the issues and pull requests of one repository to disk."""

    def __init__(self, config: FetchConfig, api: Optional[GitHubAPI] = None):
        self.config = config
        # The client acquires the throttle per request, so retries after a
        # rate limit wait are paced too
        self.api = api or GitHubAPI(
            token=config.token,
            base_url=config.api_url,
            user_agent=USER_AGENT,
            pool_size=config.max_workers,
            throttle=ThrottlePool(config.rate, 1.0),
        )
        self.output_dir = config.repo_output_dir

    def setup_directories(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def fetch_repository(self) -> Dict[str, Any]:
        logger.info(f"Fetching repository metadata for {self.config.owner}/{self.config.repo}")
        return self.api.get_repository(self.config.owner, self.config.repo)

    def fetch_issues(self) -> Tuple[List[Dict[str, Any]], List[int]]:
        """
        List every issue of the repository and split off pull requests.

        Returns:
            (issues without pull requests, pull request numbers in listing order)
        """
        issues = []
        pull_numbers = []
        for issue in self.api.iter_issues(
            self.config.owner,
            self.config.repo,
            state="all",
            direction="asc",
            per_page=100,
            since=self.config.since,
        ):
            if is_pull_request(issue):
                pull_numbers.append(issue["number"])
            else:
                issues.append(issue)

        logger.info(f"Issues: {len(issues)}")
        return issues, pull_numbers

    def _fetch_pull(self, number: int) -> Dict[str, Any]:
        logger.debug(f"Pull: {number}")
        return self.api.get_pull(self.config.owner, self.config.repo, number)

    def fetch_pulls(self, pull_numbers: List[int]) -> List[Dict[str, Any]]:
        """
        Fetch full pull request objects concurrently.

        Results keep the order of ``pull_numbers``. The first failure is
        re-raised once the pool shuts down.
        """
        logger.info(f"Pulls: {len(pull_numbers)}")
        if not pull_numbers:
            return []

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            results = executor.map(self._fetch_pull, pull_numbers)
            return list(tqdm(
                results,
                total=len(pull_numbers),
                desc="Pulls",
                unit="pr",
                disable=not self.config.progress,
            ))

    def _write(self, name: str, data: Any, result: FetchResult) -> Path:
        path = self.output_dir / output_filename(name, self.config.fmt)
        serialize_to_file(data, path, self.config.fmt)
        result.files[name] = path
        logger.info(f"Saved {name} to: {path}")
        return path

    def write_fetch_info(self, result: FetchResult, fetched_at: datetime) -> Path:
        info = {
            "owner": self.config.owner,
            "repo": self.config.repo,
            "fetched_at": fetched_at.isoformat(),
            "since": self.config.since.isoformat() if self.config.since else None,
            "format": self.config.fmt,
            "issue_count": result.issue_count,
            "pull_count": result.pull_count,
            "files": {name: path.name for name, path in result.files.items()},
            "duration_seconds": round(result.duration_seconds, 3),
        }
        path = self.output_dir / "fetch_info.json"
        with open(path, "w") as f:
            json.dump(info, f, indent=2)
        return path

    def run(self) -> FetchResult:
        """
        Fetch everything and write it under <output-directory>/<owner>/<repo>.

        Issues are written before pull requests are fetched, so they survive a
        failure during the pull phase.
        """
        started = time.monotonic()
        fetched_at = datetime.now(pytz.UTC)
        result = FetchResult()

        self.setup_directories()
        logger.info(f"Output directory: {self.output_dir}")

        if self.config.include_repository:
            self._write("repository", self.fetch_repository(), result)

        issues, pull_numbers = self.fetch_issues()
        result.issue_count = len(issues)
        self._write("issues", issues, result)

        pulls = self.fetch_pulls(pull_numbers)
        result.pull_count = len(pulls)
        self._write("pulls", pulls, result)

        result.duration_seconds = time.monotonic() - started
        self.write_fetch_info(result, fetched_at)
        logger.info(
            f"Completed fetch - {result.issue_count} issues, {result.pull_count} pulls "
            f"in {result.duration_seconds:.1f}s"
        )
        return result
