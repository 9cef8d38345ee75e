"""
CLI entry point for sprint-allocator. Wires the pipeline: ingest -> normalize -> allocate -> report
"""

import argparse
import json
import logging
import os
import sys
import webbrowser
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from allocation.aggregator import allocate_with_summary
from errors import AllocationError, ConfigError
from ingest.jira import JiraClient
from normalize.util import normalize_issues, parse_jira_timestamp
from report.renderer import render
from settings import JiraConfig, load_roster, get_team, get_workflow, parse_manual_adjustments, load_manual_adjustments
from storage.cache import Cache, configure_retry

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ('csv', 'md', 'html', 'json', 'text')


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _confirm(prompt: str) -> bool:
    return input(prompt).strip().lower() in ("y", "yes")


def _print_cache_get(cache: Cache, key: str):
    entry = cache.get(key)
    if entry is None:
        print(f"Cache key not found: {key}")
    else:
        _print_json(entry)


def _remove_cache_key(cache: Cache, key: str, force: bool):
    if not force and not _confirm(f"Remove cache key '{key}' from {cache.path}? [y/N]: "):
        print("Aborted cache key removal.")
        return
    if cache.delete_key(key):
        print(f"Removed cache key: {key}")
    else:
        print(f"Cache key not found: {key}")


def _clear_cache(cache: Cache, force: bool):
    if not force and not _confirm(f"Clear the cache at {cache.path}? This cannot be undone. [y/N]: "):
        print("Aborted cache clear.")
        return
    cache.clear()
    print(f"Cleared cache at {cache.path}")


def open_cache(args, path: str) -> Cache:
    """Open the SQLite cache with the --cache-ttl and --cache-max-entries limits applied."""
    return Cache(path, max_entries=args.cache_max_entries, ttl_seconds=args.cache_ttl)


def _cache_action_requested(args) -> bool:
    return bool(args.cache_info or args.cache_clear or args.cache_list or args.cache_get or args.cache_remove)


def _handle_cache_actions(args) -> bool:
    """Run a cache inspection/management flag if one was given. Returns True when the CLI should exit."""
    if not _cache_action_requested(args):
        return False
    with open_cache(args, args.cache or "cache.db") as cache:
        flag_actions = [
            (args.cache_info, lambda: _print_json(cache.stats())),
            (args.cache_clear, lambda: _clear_cache(cache, args.force)),
            (args.cache_list, lambda: _print_json(cache.list_keys(limit=1000))),
            (bool(args.cache_get), lambda: _print_cache_get(cache, args.cache_get)),
            (bool(args.cache_remove), lambda: _remove_cache_key(cache, args.cache_remove, args.force)),
        ]
        for enabled, handler in flag_actions:
            if enabled:
                handler()
                break
    return True


def _resolve_now(value: Optional[str]) -> datetime:
    """Pin the run clock: --now when given, otherwise the current UTC time, read once."""
    if not value:
        return datetime.now(timezone.utc)
    now = parse_jira_timestamp(value)
    if now is None:
        raise ConfigError(f"--now must be an ISO 8601 timestamp, got {value!r}")
    return now


def _resolve_adjustments(args) -> Dict[str, float]:
    adjustments: Dict[str, float] = {}
    if args.override_file:
        adjustments.update(load_manual_adjustments(args.override_file))
    if args.override:
        adjustments.update(parse_manual_adjustments(args.override))
    return adjustments


def load_issues_file(path: str) -> List[Dict[str, Any]]:
    """Read a saved Jira search response ({"issues": [...]}) or a bare list of issues."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as ex:
        raise ConfigError(f"Failed to read issues file {path}: {ex}")
    if isinstance(data, dict):
        data = data.get('issues', [])
    if not isinstance(data, list):
        raise ConfigError(f"Issues file {path} must hold a list of issues or a search response")
    return data


def fetch_raw_issues(args, cache: Optional[Cache]) -> List[Dict[str, Any]]:
    if args.issues_file:
        return load_issues_file(args.issues_file)
    config = JiraConfig(args.jira_url, args.jira_email, args.jira_token).validate()
    client = JiraClient(config, cache=cache, max_age=args.cache_max_age)
    return client.get_sprint_issues(args.project, args.sprint)


def run_pipeline(args, cache: Optional[Cache] = None):
    """Execute load roster -> fetch -> normalize -> allocate -> render and return (fmt, rendered, summary)."""
    roster = load_roster(args.teams_file)
    team = get_team(roster, args.project)
    workflow = get_workflow(roster)
    adjustments = _resolve_adjustments(args)
    now = _resolve_now(args.now)

    issues = normalize_issues(fetch_raw_issues(args, cache))
    summary = allocate_with_summary(
        team, issues, adjustments, sprint=args.sprint, now=now, workflow=workflow, exclude_issue_types=args.exclude_type or ()
    )
    fmt = (args.output or 'csv').lower()
    rendered = render(
        summary.rows,
        team.members,
        fmt=fmt,
        detailed=args.detailed,
        sprint=args.sprint,
        project=args.project,
        totals=summary.totals,
        generated_at=now.isoformat(),
    )
    return fmt, rendered, summary


def _open_file_in_browser(path: str):
    """Open a file URL in the system default web browser."""
    webbrowser.open("file://" + os.path.abspath(path))


def write_output(fmt: str, rendered: str, args):
    """Write the report to --out-file, or print it to stdout."""
    if not args.out_file:
        print(rendered, end='' if rendered.endswith('\n') else '\n')
        return
    out_path = args.out_file
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' keeps csv line endings as written
    with open(out_path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(rendered)
    print(f"Wrote report to {out_path}")
    if args.open and fmt == 'html':
        try:
            _open_file_in_browser(out_path)
        except webbrowser.Error:
            print("Failed to open browser automatically; file saved at", out_path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Allocate each contributor's sprint time across Jira issues as percentages")
    parser.add_argument("-p", "--project", type=str, help="Jira project key (must exist in the team roster)")
    parser.add_argument("-s", "--sprint", type=str, help="Sprint name or ID")
    parser.add_argument("-o", "--override", type=str, default="", help='Manual adjustments as JSON: issue key -> working hours (e.g. \'{"ISSUE-1": 6, "ISSUE-2": 36}\')')
    parser.add_argument("--override-file", type=str, default="", help="Path to a JSON file with manual adjustments (merged under --override)")
    parser.add_argument("--teams-file", type=str, default="", help="Team roster YAML/JSON (defaults to $SPRINT_ALLOC_TEAMS or config/teams.yaml)")
    parser.add_argument("--issues-file", type=str, default="", help="Read issues from a saved Jira search response instead of calling Jira")
    parser.add_argument("--now", type=str, default="", help="Fixed 'now' (ISO 8601) used to close still-open issues")
    parser.add_argument("--exclude-type", action="append", default=[], help="Issue type to leave out (repeatable, e.g. Sub-task)")
    parser.add_argument("--detailed", action="store_true", help="Add issueType, status, dateStarted, dateCompleted and workingHours columns")
    parser.add_argument("--output", type=str, choices=OUTPUT_FORMATS, default="csv", help="Output format")
    parser.add_argument("--out-file", type=str, default="", help="Write the report to this file instead of stdout")
    parser.add_argument("--open", action="store_true", help="Open the generated HTML report in the default browser")
    parser.add_argument("--jira-url", type=str, help="Jira base URL (or env JIRA_BASE_URL)")
    parser.add_argument("--jira-email", type=str, help="Jira account email (or env JIRA_EMAIL)")
    parser.add_argument("--jira-token", type=str, help="Jira API token (or env JIRA_TOKEN)")
    parser.add_argument("--cache", type=str, default="", help="Path to SQLite cache file (optional)")
    parser.add_argument("--cache-max-age", type=float, default=None, help="Ignore cached Jira responses older than this many seconds")
    parser.add_argument("--cache-ttl", type=float, default=None, help="Drop cached entries older than this many seconds when the cache is opened or written")
    parser.add_argument("--cache-max-entries", type=int, default=None, help="Keep at most this many cached entries, pruning the oldest")
    # retry/backoff overrides; SPRINT_ALLOC_MAX_RETRIES, SPRINT_ALLOC_BACKOFF_BASE, SPRINT_ALLOC_BACKOFF_JITTER
    # and SPRINT_ALLOC_MAX_BACKOFF set the defaults
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts for Jira requests")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds")
    parser.add_argument("--cache-info", action="store_true", help="Show cache statistics (uses --cache or cache.db)")
    parser.add_argument("--cache-clear", action="store_true", help="Clear the persistent cache (uses --cache or cache.db)")
    parser.add_argument("--cache-list", action="store_true", help="List cache keys (uses --cache or cache.db)")
    parser.add_argument("--cache-get", type=str, default="", help="Show a cached entry")
    parser.add_argument("--cache-remove", type=str, default="", help="Remove a cached entry")
    parser.add_argument("--force", action="store_true", help="Skip confirmation for --cache-clear / --cache-remove")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-issue hours and dropped issues")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)

    if _handle_cache_actions(args):
        return 0

    if not args.project or not args.sprint:
        parser.error("--project and --sprint are required")

    cache = open_cache(args, args.cache) if args.cache else None
    try:
        fmt, rendered, summary = run_pipeline(args, cache)
        write_output(fmt, rendered, args)
        logger.info("Contributor totals: %s", summary.totals)
    except AllocationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if cache:
            cache.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
