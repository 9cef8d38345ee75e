"""
Jira ingestion client used by the CLI.
Fetches every issue in a project's sprint, with changelog expanded, from the Jira REST search API.
"""

import logging
from typing import List, Dict, Any, Optional
from errors import JiraRequestError
from settings import JiraConfig
from storage.cache import rate_limited_get, Cache

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "summary,assignee,status,issuetype"
PAGE_SIZE = 50


def quote_sprint(sprint: str) -> str:
    """Numeric sprint ids go into JQL bare; names are double-quoted."""
    if sprint.isdigit():
        return sprint
    return '"' + sprint.replace('"', '\\"') + '"'


def build_sprint_jql(project: str, sprint: str) -> str:
    return f"project = {project} AND sprint = {quote_sprint(sprint)} ORDER BY created ASC"


class JiraClient:
    """Minimal Jira client for fetching a sprint's issues.

    Network access goes through storage.cache.rate_limited_get so responses can be cached
    and retried; tests patch that function or requests.get.
    """

    def __init__(self, config: JiraConfig, cache: Optional[Cache] = None, max_age: Optional[float] = None):
        self.config = config
        self.base_url = f"{config.base_url}/rest/api/3"
        self.headers = {
            "Authorization": config.auth_header(),
            "Accept": "application/json",
        }
        self.cache = cache
        self.max_age = max_age

    def _search_page(self, jql: str, start_at: int, cache_key: str) -> Dict[str, Any]:
        params = {"jql": jql, "startAt": start_at, "maxResults": PAGE_SIZE, "fields": SEARCH_FIELDS, "expand": "changelog"}
        res = rate_limited_get(f"{self.base_url}/search", headers=self.headers, params=params, cache=self.cache, cache_key=cache_key, max_age=self.max_age)
        status = res.get('status', 0)
        if status != 200:
            logger.warning("Jira search failed with status %s at startAt=%d", status, start_at)
            raise JiraRequestError(f"failed to fetch sprint issues: Jira returned status {status}", status=status)
        data = res.get('response')
        if not isinstance(data, dict):
            raise JiraRequestError("failed to fetch sprint issues: unexpected Jira response body", status=status)
        return data

    def get_sprint_issues(self, project: str, sprint: str) -> List[Dict[str, Any]]:
        """Return raw Jira issue dicts for every issue in the sprint, following pagination."""
        jql = build_sprint_jql(project, sprint)
        issues: List[Dict[str, Any]] = []
        start_at = 0
        while True:
            key = f"jira:{project}:{sprint}:{start_at}"
            data = self._search_page(jql, start_at, key)
            page = data.get('issues', []) or []
            logger.debug("Fetched %d issues at startAt=%d for %s", len(page), start_at, key)
            issues.extend(page)
            if len(page) < PAGE_SIZE:
                break
            start_at += PAGE_SIZE
        return issues
