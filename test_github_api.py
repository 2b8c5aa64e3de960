#!/usr/bin/env python3
"""
Unit tests for the GitHub API client.

These tests validate pagination, error mapping and rate limit handling
without making actual network requests.
"""

import time
import unittest
from datetime import datetime
from unittest.mock import Mock, patch

import pytz
import requests
from github import (
    BadCredentialsException,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from github_api import (
    GitHubAPI,
    GitHubAPIError,
    GitHubAuthenticationError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubTemporarilyUnavailable,
    rate_limit_status,
)


def make_response(status_code=200, payload=None, headers=None, next_url=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.links = {"next": {"url": next_url}} if next_url else {}
    response.json.return_value = payload
    response.text = text
    return response


class TestGitHubAPI(unittest.TestCase):
    """Test cases for the GitHub API client"""

    def setUp(self):
        self.sleep = Mock()
        self.api = GitHubAPI("secret-token", sleep=self.sleep, max_rate_limit_waits=2)

    def test_api_initialization(self):
        """Test that the session carries auth and identification headers"""
        headers = self.api.session.headers
        self.assertEqual(headers["Authorization"], "token secret-token")
        self.assertEqual(headers["Accept"], "application/vnd.github+json")
        self.assertTrue(headers["User-Agent"].startswith("github-data-fetch/"))
        self.assertEqual(self.api.base_url, "https://api.github.com")

    def test_base_url_trailing_slash_stripped(self):
        api = GitHubAPI("t", base_url="https://ghe.example.com/api/v3/")
        self.assertEqual(api.base_url, "https://ghe.example.com/api/v3")

    @patch('github_api.requests.Session.get')
    def test_iter_issues_follows_next_links(self, mock_get):
        """Test that every page is fetched until there is no next link"""
        mock_get.side_effect = [
            make_response(payload=[{"number": 1}, {"number": 2}],
                          next_url="https://api.github.com/repositories/1/issues?page=2"),
            make_response(payload=[{"number": 3, "pull_request": {}}]),
        ]

        issues = list(self.api.iter_issues("octo", "hello"))

        self.assertEqual([i["number"] for i in issues], [1, 2, 3])
        self.assertEqual(mock_get.call_count, 2)

        first_url = mock_get.call_args_list[0].args[0]
        first_params = mock_get.call_args_list[0].kwargs["params"]
        self.assertEqual(first_url, "https://api.github.com/repos/octo/hello/issues")
        self.assertEqual(first_params["state"], "all")
        self.assertEqual(first_params["direction"], "asc")
        self.assertEqual(first_params["per_page"], 100)
        self.assertNotIn("since", first_params)

        second_url = mock_get.call_args_list[1].args[0]
        self.assertEqual(second_url, "https://api.github.com/repositories/1/issues?page=2")
        self.assertIsNone(mock_get.call_args_list[1].kwargs["params"])

    @patch('github_api.requests.Session.get')
    def test_iter_issues_since_is_sent_in_utc(self, mock_get):
        mock_get.return_value = make_response(payload=[])
        since = pytz.timezone("US/Eastern").localize(datetime(2024, 1, 1, 7, 0, 0))

        self.assertEqual(list(self.api.iter_issues("octo", "hello", since=since)), [])

        params = mock_get.call_args.kwargs["params"]
        self.assertEqual(params["since"], "2024-01-01T12:00:00Z")

    @patch('github_api.requests.Session.get')
    def test_iter_issues_rejects_non_list_payload(self, mock_get):
        mock_get.return_value = make_response(payload={"message": "weird"})
        with self.assertRaises(GitHubAPIError):
            list(self.api.iter_issues("octo", "hello"))

    @patch('github_api.requests.Session.get')
    def test_get_pull_success(self, mock_get):
        mock_get.return_value = make_response(payload={"number": 7, "merged": True})

        pull = self.api.get_pull("octo", "hello", 7)

        self.assertEqual(pull["number"], 7)
        self.assertEqual(mock_get.call_args.args[0], "https://api.github.com/repos/octo/hello/pulls/7")

    @patch('github_api.requests.Session.get')
    def test_error_statuses_are_mapped(self, mock_get):
        """Test handling of error responses"""
        cases = [
            (401, GitHubAuthenticationError),
            (404, GitHubNotFoundError),
            (500, GitHubTemporarilyUnavailable),
            (502, GitHubTemporarilyUnavailable),
            (422, GitHubAPIError),
            (403, GitHubAPIError),
        ]
        for status, exc in cases:
            with self.subTest(status=status):
                mock_get.return_value = make_response(status_code=status, text="nope")
                with self.assertRaises(exc):
                    self.api.get_pull("octo", "hello", 1)
        self.sleep.assert_not_called()

    @patch('github_api.requests.Session.get')
    def test_network_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("connection refused")
        with self.assertRaises(GitHubAPIError):
            self.api.get_pull("octo", "hello", 1)

    @patch('github_api.requests.Session.get')
    def test_invalid_json(self, mock_get):
        response = make_response()
        response.json.side_effect = ValueError("Expecting value")
        mock_get.return_value = response
        with self.assertRaises(GitHubAPIError):
            self.api.get_pull("octo", "hello", 1)

    @patch('github_api.requests.Session.get')
    def test_waits_for_primary_rate_limit_reset(self, mock_get):
        """Test that an exhausted quota sleeps until reset and retries"""
        reset = int(time.time()) + 5
        mock_get.side_effect = [
            make_response(status_code=403, headers={
                "X-RateLimit-Limit": "5000",
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(reset),
            }),
            make_response(payload={"number": 9}),
        ]

        pull = self.api.get_pull("octo", "hello", 9)

        self.assertEqual(pull["number"], 9)
        self.assertEqual(mock_get.call_count, 2)
        self.sleep.assert_called_once()
        waited = self.sleep.call_args.args[0]
        self.assertGreater(waited, 0)
        self.assertLessEqual(waited, 7)

    @patch('github_api.requests.Session.get')
    def test_secondary_rate_limit_uses_retry_after(self, mock_get):
        mock_get.side_effect = [
            make_response(status_code=429, headers={"Retry-After": "3"}),
            make_response(payload=[]),
        ]

        self.assertEqual(list(self.api.iter_issues("octo", "hello")), [])
        self.sleep.assert_called_once_with(3.0)

    @patch('github_api.requests.Session.get')
    def test_bare_429_waits_default_period(self, mock_get):
        """Test that a 429 without rate limit headers waits 60 seconds"""
        mock_get.side_effect = [
            make_response(status_code=429),
            make_response(payload={"number": 2}),
        ]

        self.assertEqual(self.api.get_pull("octo", "hello", 2)["number"], 2)
        self.sleep.assert_called_once_with(60.0)

    @patch('github_api.requests.Session.get')
    def test_403_with_retry_after_is_secondary_limit(self, mock_get):
        mock_get.side_effect = [
            make_response(status_code=403, headers={"Retry-After": "7"}),
            make_response(payload={"number": 3}),
        ]

        self.assertEqual(self.api.get_pull("octo", "hello", 3)["number"], 3)
        self.sleep.assert_called_once_with(7.0)

    @patch('github_api.requests.Session.get')
    def test_throttle_acquired_for_retry_after_rate_limit(self, mock_get):
        """Test that the retry after a rate limit wait goes through the throttle"""
        throttle = Mock()
        api = GitHubAPI("tok", sleep=self.sleep, throttle=throttle)
        mock_get.side_effect = [
            make_response(status_code=429, headers={"Retry-After": "1"}),
            make_response(payload={"number": 4}),
        ]

        api.get_pull("octo", "hello", 4)

        self.assertEqual(throttle.acquire.call_count, 2)

    @patch('github_api.requests.Session.get')
    def test_rate_limit_gives_up_after_max_waits(self, mock_get):
        reset = int(time.time()) + 60
        mock_get.return_value = make_response(status_code=429, headers={
            "Retry-After": "1",
            "X-RateLimit-Reset": str(reset),
        })

        with self.assertRaises(GitHubRateLimitError) as ctx:
            self.api.get_pull("octo", "hello", 1)

        self.assertEqual(self.sleep.call_count, 2)
        self.assertEqual(mock_get.call_count, 3)
        self.assertEqual(ctx.exception.reset_at, datetime.fromtimestamp(reset, pytz.UTC))

    @patch('github_api.Github')
    def test_get_repository(self, mock_github_cls):
        repository = Mock()
        repository.raw_data = {"full_name": "octo/hello", "stargazers_count": 3}
        mock_github_cls.return_value.get_repo.return_value = repository

        data = self.api.get_repository("octo", "hello")

        self.assertEqual(data["full_name"], "octo/hello")
        mock_github_cls.return_value.get_repo.assert_called_once_with("octo/hello")

    @patch('github_api.Github')
    def test_get_repository_not_found(self, mock_github_cls):
        mock_github_cls.return_value.get_repo.side_effect = UnknownObjectException(
            404, {"message": "Not Found"}, {}
        )
        with self.assertRaises(GitHubNotFoundError):
            self.api.get_repository("octo", "missing")

    @patch('github_api.Github')
    def test_get_repository_bad_credentials(self, mock_github_cls):
        mock_github_cls.return_value.get_repo.side_effect = BadCredentialsException(
            401, {"message": "Bad credentials"}, {}
        )
        with self.assertRaises(GitHubAuthenticationError):
            self.api.get_repository("octo", "hello")

    @patch('github_api.Github')
    def test_get_repository_server_error(self, mock_github_cls):
        mock_github_cls.return_value.get_repo.side_effect = GithubException(
            502, {"message": "Bad Gateway"}, {}
        )
        with self.assertRaises(GitHubTemporarilyUnavailable):
            self.api.get_repository("octo", "hello")

    @patch('github_api.Github')
    def test_get_repository_rate_limited(self, mock_github_cls):
        mock_github_cls.return_value.get_repo.side_effect = RateLimitExceededException(
            403, {"message": "API rate limit exceeded"}, {"x-ratelimit-reset": "1700000000"}
        )
        with self.assertRaises(GitHubRateLimitError) as ctx:
            self.api.get_repository("octo", "hello")
        self.assertEqual(ctx.exception.reset_at, datetime(2023, 11, 14, 22, 13, 20, tzinfo=pytz.UTC))


class TestRateLimitStatus(unittest.TestCase):

    def test_parses_headers(self):
        response = make_response(headers={
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Remaining": "4999",
            "X-RateLimit-Reset": "1700000000",
        })
        status = rate_limit_status(response)
        self.assertEqual(status.limit, 5000)
        self.assertEqual(status.remaining, 4999)
        self.assertEqual(status.reset_at, datetime(2023, 11, 14, 22, 13, 20, tzinfo=pytz.UTC))

    def test_missing_or_bad_headers(self):
        status = rate_limit_status(make_response(headers={"X-RateLimit-Remaining": "lots"}))
        self.assertIsNone(status.limit)
        self.assertIsNone(status.remaining)
        self.assertIsNone(status.reset_at)


def run_tests():
    """Run all tests"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestGitHubAPI))
    suite.addTests(loader.loadTestsFromTestCase(TestRateLimitStatus))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    import sys
    sys.exit(run_tests())
