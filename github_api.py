#!/usr/bin/env python3
"""
GitHub API Client

Thin client over the GitHub REST API used to pull the issue and pull request
history of a single repository. Listing and pull requests go through a
requests session with a retry strategy; repository metadata is read with
PyGithub.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional

import pytz
import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from throttle import ThrottlePool

__version__ = "0.1.0"

DEFAULT_BASE_URL = "https://api.github.com"
USER_AGENT = f"github-data-fetch/{__version__}"
API_VERSION = "2022-11-28"

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Base exception for GitHub API errors"""
    pass


class GitHubAuthenticationError(GitHubAPIError):
    """The token was rejected"""
    pass


class GitHubNotFoundError(GitHubAPIError):
    """Repository or pull request does not exist, or is not visible to the token"""
    pass


class GitHubTemporarilyUnavailable(GitHubAPIError):
    """Exception for when GitHub keeps answering with server errors"""
    pass


class GitHubRateLimitError(GitHubAPIError):
    """Rate limit still exhausted after waiting for it to reset"""

    def __init__(self, message: str, reset_at: Optional[datetime] = None):
        super().__init__(message)
        self.reset_at = reset_at


class _RateLimited(Exception):
    # Internal signal from _request to the wait loop.
    def __init__(self, wait_seconds: float, reset_at: Optional[datetime]):
        super().__init__(wait_seconds)
        self.wait_seconds = wait_seconds
        self.reset_at = reset_at


@dataclass(frozen=True)
class RateLimitStatus:
    limit: Optional[int]
    remaining: Optional[int]
    reset_at: Optional[datetime]


def rate_limit_status(response: requests.Response) -> RateLimitStatus:
    """Parse the X-RateLimit-* headers of a response."""
    headers = response.headers

    def _int(name: str) -> Optional[int]:
        value = headers.get(name)
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    reset = _int("X-RateLimit-Reset")
    reset_at = datetime.fromtimestamp(reset, pytz.UTC) if reset is not None else None
    return RateLimitStatus(
        limit=_int("X-RateLimit-Limit"),
        remaining=_int("X-RateLimit-Remaining"),
        reset_at=reset_at,
    )


def _reset_from_headers(headers: Optional[Dict[str, str]]) -> Optional[datetime]:
    # PyGithub hands back lower-cased header names
    for name, value in (headers or {}).items():
        if name.lower() == "x-ratelimit-reset":
            try:
                return datetime.fromtimestamp(int(value), pytz.UTC)
            except (TypeError, ValueError):
                return None
    return None


class GitHubAPI:
    """
    Client for reading repository data from the GitHub REST API.

    Server errors are retried by the session adapter. Rate limiting is handled
    here: when GitHub reports the limit as exhausted, the calling thread sleeps
    until the advertised reset and repeats the request.
    """

    SECONDARY_RATE_LIMIT_WAIT = 60
    RESET_SLACK_SECONDS = 1

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: tuple = (10, 30),
        user_agent: str = USER_AGENT,
        max_rate_limit_waits: int = 5,
        pool_size: int = 10,
        throttle: Optional[ThrottlePool] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the API client.

        Args:
            token: GitHub personal access token
            base_url: API root, override for GitHub Enterprise
            timeout: Tuple of (connect_timeout, read_timeout) in seconds
            user_agent: User-Agent header sent with every request
            max_rate_limit_waits: How many times in a row a request may wait
                for the rate limit to reset before giving up
            pool_size: Connection pool size, at least the number of threads
                sharing this client
            throttle: Acquired before every REST request, including the
                retry that follows a rate limit wait
            sleep: Sleep function, replaced in tests
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_rate_limit_waits = max_rate_limit_waits
        self.throttle = throttle
        self._sleep = sleep
        self.session = self._create_session(pool_size)
        self._github = None

    def _create_session(self, pool_size: int) -> requests.Session:
        """Create a requests session with retry strategy"""
        session = requests.Session()

        # Rate limit responses (403/429) are handled by _request, not here
        retry_strategy = Retry(
            total=3,
            backoff_factor=2,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=1,
            pool_maxsize=pool_size,
        )

        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "Accept": "application/vnd.github+json",
            "Authorization": f"token {self.token}",
            "User-Agent": self.user_agent,
            "X-GitHub-Api-Version": API_VERSION,
        })

        return session

    @property
    def github(self) -> Github:
        if self._github is None:
            self._github = Github(
                auth=Auth.Token(self.token),
                base_url=self.base_url,
                user_agent=self.user_agent,
                timeout=self.timeout[1],
            )
        return self._github

    def _rate_limit_wait(self, response: requests.Response) -> Optional[float]:
        """
        Return how long to wait if the response is a rate limit response.

        Returns:
            Seconds to sleep, or None if the response is not rate limited
        """
        if response.status_code not in (403, 429):
            return None

        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                return float(self.SECONDARY_RATE_LIMIT_WAIT)

        status = rate_limit_status(response)
        if status.remaining == 0:
            if status.reset_at is None:
                return float(self.SECONDARY_RATE_LIMIT_WAIT)
            now = datetime.now(pytz.UTC)
            delta = (status.reset_at - now).total_seconds()
            return max(delta, 0.0) + self.RESET_SLACK_SECONDS

        if response.status_code == 429:
            return float(self.SECONDARY_RATE_LIMIT_WAIT)
        return None

    def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Issue one GET and map error statuses onto the exception hierarchy."""
        if self.throttle is not None:
            self.throttle.acquire()
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise GitHubAPIError(f"Network error: {e}") from e

        wait = self._rate_limit_wait(response)
        if wait is not None:
            raise _RateLimited(wait, rate_limit_status(response).reset_at)

        if response.status_code == 401:
            raise GitHubAuthenticationError(f"Bad credentials for {url}")
        if response.status_code == 404:
            raise GitHubNotFoundError(f"Not found: {url}")
        if response.status_code >= 500:
            raise GitHubTemporarilyUnavailable(
                f"GitHub server error: {response.status_code}"
            )
        if response.status_code >= 400:
            raise GitHubAPIError(
                f"API request failed: {response.status_code} - {response.text[:200]}"
            )
        return response

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """GET with rate limit waits; gives up after max_rate_limit_waits."""
        waits = 0
        while True:
            try:
                return self._request(url, params)
            except _RateLimited as limited:
                waits += 1
                if waits > self.max_rate_limit_waits:
                    raise GitHubRateLimitError(
                        f"Rate limit still exhausted after {self.max_rate_limit_waits} waits",
                        reset_at=limited.reset_at,
                    ) from None
                logger.warning(
                    f"Rate limited on {url}, sleeping {limited.wait_seconds:.0f}s "
                    f"(wait {waits}/{self.max_rate_limit_waits})"
                )
                self._sleep(limited.wait_seconds)

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(f"Invalid JSON response: {e}") from e

    def iter_issues(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        direction: str = "asc",
        per_page: int = 100,
        since: Optional[datetime] = None,
    ) -> Iterator[Dict[str, Any]]:
        """
        Generator that yields every issue of a repository, page by page.

        The issues endpoint also returns pull requests; those carry a
        ``pull_request`` key.

        Args:
            owner: Repository owner
            repo: Repository name
            state: open, closed or all
            direction: asc or desc, by creation date
            per_page: Page size, at most 100
            since: Only issues updated at or after this time

        Yields:
            Issue dictionaries as returned by the API
        """
        params = {
            "state": state,
            "sort": "created",
            "direction": direction,
            "per_page": per_page,
        }
        if since is not None:
            params["since"] = since.astimezone(pytz.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

        url = f"{self.base_url}/repos/{owner}/{repo}/issues"
        page = 1
        while url:
            logger.debug(f"Fetching issues page {page}")
            response = self._get(url, params)
            issues = self._json(response)
            if not isinstance(issues, list):
                raise GitHubAPIError(f"Unexpected issues payload: {type(issues).__name__}")

            for issue in issues:
                yield issue

            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None
            page += 1

    def get_pull(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        """
        Get a single pull request.

        Args:
            owner: Repository owner
            repo: Repository name
            number: Pull request number

        Returns:
            Full pull request object
        """
        url = f"{self.base_url}/repos/{owner}/{repo}/pulls/{number}"
        return self._json(self._get(url))

    def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        """
        Get repository metadata.

        Args:
            owner: Repository owner
            repo: Repository name

        Returns:
            Repository object as returned by the API
        """
        try:
            repository = self.github.get_repo(f"{owner}/{repo}")
            return repository.raw_data
        except BadCredentialsException as e:
            raise GitHubAuthenticationError(f"Bad credentials for {owner}/{repo}") from e
        except UnknownObjectException as e:
            raise GitHubNotFoundError(f"Repository not found: {owner}/{repo}") from e
        except RateLimitExceededException as e:
            raise GitHubRateLimitError(
                f"Rate limit exceeded fetching repository {owner}/{repo}",
                reset_at=_reset_from_headers(e.headers),
            ) from e
        except GithubException as e:
            if e.status is not None and e.status >= 500:
                raise GitHubTemporarilyUnavailable(f"GitHub server error: {e.status}") from e
            raise GitHubAPIError(f"Failed to fetch repository {owner}/{repo}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise GitHubAPIError(f"Network error fetching repository: {e}") from e

    def close(self) -> None:
        self.session.close()
        if self._github is not None:
            self._github.close()
