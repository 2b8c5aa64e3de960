#!/usr/bin/env python3
"""
Fetch the issues and pull requests of a GitHub repository.

Usage:
    github-data-fetch -O repoowner -r reponame -t githubtoken -o outpath

Output lands in <outpath>/<repoowner>/<reponame>/:
    repository.msgpack, issues.msgpack, pulls.msgpack, fetch_info.json
"""

import argparse
import logging
import os
import sys

from fetch_config import ConfigError, FetchConfig
from fetcher import GitHubDataFetcher
from github_api import GitHubAPIError, GitHubRateLimitError, __version__
from serializers import FORMATS

EXIT_OK = 0
EXIT_API_ERROR = 1
EXIT_USAGE = 2


def setup_logging(log_dir, verbose=False):
    """Configure logging to file and console"""
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(log_dir, 'github_data_fetch.log')),
            logging.StreamHandler()
        ],
        force=True,
    )
    # urllib3 logs every retry at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='github-data-fetch',
        description='Fetch the issues and pull requests of a GitHub repository'
    )
    parser.add_argument('--version', action='version',
                        version=f'github-data-fetch {__version__}')
    parser.add_argument('-O', '--owner', required=True,
                        help='Repository owner to fetch data for')
    parser.add_argument('-r', '--repository', required=True,
                        help='Repository name to fetch data for')
    parser.add_argument('-t', '--token', default=None,
                        help='GitHub API token to use (defaults to $GITHUB_TOKEN)')
    parser.add_argument('-o', '--output-directory', required=True,
                        help='Directory to output the data to')
    parser.add_argument('--format', choices=sorted(FORMATS), default='msgpack',
                        help='Output file format (default: msgpack)')
    parser.add_argument('--since', default=None,
                        help='Only fetch issues updated at or after this ISO-8601 timestamp')
    parser.add_argument('--max-workers', type=int, default=8,
                        help='Threads used to fetch pull requests (default: 8)')
    parser.add_argument('--rate', type=int, default=20,
                        help='Pull request requests per second (default: 20)')
    parser.add_argument('--api-url', default=None,
                        help='GitHub API base URL (defaults to $GITHUB_API_URL or https://api.github.com)')
    parser.add_argument('--skip-repository', action='store_true',
                        help='Do not write repository metadata')
    parser.add_argument('--no-progress', action='store_true',
                        help='Disable the pull request progress bar')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable debug logging')
    return parser


def parse_args(argv=None):
    return build_parser().parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        config = FetchConfig.from_args(args)
    except ConfigError as e:
        print(f"github-data-fetch: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        logger = setup_logging(str(config.repo_output_dir), config.verbose)
    except OSError as e:
        print(f"github-data-fetch: error: cannot use output directory: {e}", file=sys.stderr)
        return EXIT_USAGE
    logger.info(f"Fetching {config.owner}/{config.repo}")

    fetcher = GitHubDataFetcher(config)
    try:
        result = fetcher.run()
    except GitHubRateLimitError as e:
        reset = f" (resets at {e.reset_at.isoformat()})" if e.reset_at else ""
        logger.error(f"Rate limit exhausted: {e}{reset}")
        return EXIT_API_ERROR
    except GitHubAPIError as e:
        logger.error(f"Error fetching {config.owner}/{config.repo}: {e}")
        return EXIT_API_ERROR
    except OSError as e:
        logger.error(f"Error writing output: {e}")
        return EXIT_USAGE
    finally:
        fetcher.api.close()

    for name, path in result.files.items():
        print(f"{name}: {path}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
