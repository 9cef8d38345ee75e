"""
Configuration loading: Jira credentials, team roster and manual adjustments.
"""
import base64
import json
import logging
import math
import os
from typing import Dict, Any, Optional
from urllib.parse import urlparse

import yaml

from errors import ConfigError, UnknownProjectError, JiraConfigError, ManualAdjustmentError
from normalize.models import Team, BASE_COLUMNS, DETAIL_COLUMNS
from allocation.replay import Workflow, DEFAULT_WORKFLOW

logger = logging.getLogger(__name__)

TEAMS_FILENAME = 'teams.yaml'
TEAMS_ENV = 'SPRINT_ALLOC_TEAMS'
WORKFLOW_KEY = 'workflow'

ENV_JIRA_BASE_URL = 'JIRA_BASE_URL'
ENV_JIRA_EMAIL = 'JIRA_EMAIL'
ENV_JIRA_TOKEN = 'JIRA_TOKEN'


class JiraConfig:
    """
    Jira connection settings. Explicit values win over the JIRA_* environment variables.
    """
    def __init__(self, base_url: Optional[str] = None, email: Optional[str] = None, token: Optional[str] = None):
        self.base_url = (base_url or os.getenv(ENV_JIRA_BASE_URL) or '').rstrip('/')
        self.email = email or os.getenv(ENV_JIRA_EMAIL) or ''
        self.token = token or os.getenv(ENV_JIRA_TOKEN) or ''

    def validate(self) -> 'JiraConfig':
        if not self.base_url:
            raise JiraConfigError(f"{ENV_JIRA_BASE_URL} is not set (use --jira-url or the environment variable)")
        parsed = urlparse(self.base_url)
        if not parsed.scheme.startswith('http') or not parsed.netloc:
            raise JiraConfigError(f"{ENV_JIRA_BASE_URL} must be a valid http(s) URL, got {self.base_url!r}")
        if not self.email:
            raise JiraConfigError(f"{ENV_JIRA_EMAIL} is not set (use --jira-email or the environment variable)")
        if not self.token:
            raise JiraConfigError(f"{ENV_JIRA_TOKEN} is not set (use --jira-token or the environment variable)")
        return self

    def auth_header(self) -> str:
        raw = f"{self.email}:{self.token}".encode('utf-8')
        return 'Basic ' + base64.b64encode(raw).decode('ascii')


def default_teams_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', TEAMS_FILENAME)


def resolve_teams_path(path: Optional[str] = None) -> str:
    """CLI path first, then $SPRINT_ALLOC_TEAMS, then config/teams.yaml beside the sources."""
    return path or os.getenv(TEAMS_ENV) or default_teams_path()


def load_roster(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the roster document. JSON is a subset of YAML, so teams.json files load too.
    """
    path = resolve_teams_path(path)
    if not os.path.exists(path):
        raise ConfigError(f"Team roster not found at: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as ex:
        raise ConfigError(f"Failed to read team roster {path}: {ex}")
    if not isinstance(doc, dict):
        raise ConfigError(f"Team roster {path} must be a mapping of project key to team")
    logger.debug("Loaded roster from %s with projects %s", path, [k for k in doc if k != WORKFLOW_KEY])
    return doc


def _members_of(entry: Any, project: str):
    members = entry.get('team') if isinstance(entry, dict) else entry
    if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
        raise ConfigError(f"Team for project {project} must be a list of display names")
    reserved = [m for m in members if m in BASE_COLUMNS or m in DETAIL_COLUMNS]
    if reserved:
        # member names become report columns
        raise ConfigError(f"Team for project {project} uses reserved column name(s): {', '.join(reserved)}")
    return members


def get_team(roster: Dict[str, Any], project: str) -> Team:
    """Return the Team for a project key, or raise UnknownProjectError."""
    known = [k for k in roster if k != WORKFLOW_KEY]
    if project == WORKFLOW_KEY or project not in roster:
        raise UnknownProjectError(project, known)
    return Team(project, _members_of(roster[project], project))


def get_workflow(roster: Dict[str, Any]) -> Workflow:
    """Optional `workflow:` section renaming the in-progress and terminal statuses."""
    section = roster.get(WORKFLOW_KEY)
    if not section:
        return DEFAULT_WORKFLOW
    if not isinstance(section, dict):
        raise ConfigError("workflow section must be a mapping with in_progress and terminal")
    in_progress = section.get('in_progress', DEFAULT_WORKFLOW.in_progress)
    terminal = section.get('terminal', list(DEFAULT_WORKFLOW.terminal))
    if not isinstance(in_progress, str) or not isinstance(terminal, list):
        raise ConfigError("workflow.in_progress must be a string and workflow.terminal a list")
    return Workflow(in_progress=in_progress, terminal=terminal)


def _coerce_hours(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ManualAdjustmentError(f"manual adjustment for {key} must be a number of hours, got {value!r}")
    hours = float(value)
    if not math.isfinite(hours):
        raise ManualAdjustmentError(f"manual adjustment for {key} must be finite, got {value!r}")
    return hours


def parse_manual_adjustments(raw: Optional[str]) -> Dict[str, float]:
    """
    Parse '{"ISSUE-1": 6, "ISSUE-2": 36}' into issue key -> hours.
    An empty or missing string means no adjustments. Zero values are kept as given.
    """
    if raw is None or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError as ex:
        raise ManualAdjustmentError(f"error parsing manual adjustments JSON: {ex}")
    if not isinstance(data, dict):
        raise ManualAdjustmentError("manual adjustments must be a JSON object of issue key to hours")
    return {str(k): _coerce_hours(k, v) for k, v in data.items()}


def load_manual_adjustments(path: str) -> Dict[str, float]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = f.read()
    except OSError as ex:
        raise ManualAdjustmentError(f"Failed to read manual adjustments file {path}: {ex}")
    return parse_manual_adjustments(raw)
