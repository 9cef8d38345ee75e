"""
Exception types raised by the allocation tool.
Data problems inside the engine (bad timestamps, unknown assignees) are filters, not errors.
"""


class AllocationError(Exception):
    """Base class for failures that abort an allocation run."""


class ConfigError(AllocationError, ValueError):
    """Roster or credential configuration is missing or malformed."""


class UnknownProjectError(ConfigError):
    def __init__(self, project: str, known=None):
        self.project = project
        self.known = sorted(known or [])
        hint = f" (known projects: {', '.join(self.known)})" if self.known else ''
        super().__init__(f"project {project} not found in team roster{hint}")


class JiraConfigError(ConfigError):
    """Jira base URL, email or token is missing or invalid."""


class ManualAdjustmentError(AllocationError, ValueError):
    """Operator-supplied manual adjustments could not be parsed."""


class JiraRequestError(AllocationError):
    def __init__(self, message: str, status: int = 0):
        self.status = status
        super().__init__(message)


class ReportSchemaError(AllocationError, ValueError):
    """A configured report column has no value in the first data row."""
