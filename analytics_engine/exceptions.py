"""Error taxonomy shared by the engine, managers and scheduler."""

from typing import Optional


class AnalyticsError(Exception):
    """Base class for every error raised by analytics_engine."""


class ValidationError(AnalyticsError, ValueError):
    """A pipeline, stage body, cron expression or entity is malformed."""


class CronParseError(ValidationError):
    """A cron expression could not be parsed."""

    def __init__(self, message: str, expression: str = ""):
        super().__init__(message)
        self.expression = expression


class NotFoundError(AnalyticsError, LookupError):
    """An operation referenced an id that is not registered."""

    def __init__(self, kind: str, entity_id: str, parent: Optional[str] = None):
        self.kind = kind
        self.entity_id = entity_id
        self.parent = parent
        msg = f'{kind} "{entity_id}" not found'
        if parent:
            msg += f" in {parent}"
        super().__init__(msg)


class ConflictError(AnalyticsError):
    """An entity with the same id is already registered."""

    def __init__(self, kind: str, entity_id: str, parent: Optional[str] = None):
        self.kind = kind
        self.entity_id = entity_id
        self.parent = parent
        msg = f'{kind} "{entity_id}" already exists'
        if parent:
            msg += f" in {parent}"
        super().__init__(msg)


class ExecutionError(AnalyticsError):
    """A pipeline or report failed while running."""


class MissingParameterError(ExecutionError):
    """A required report parameter has neither a value nor a default."""

    def __init__(self, parameter: str, report_id: str = ""):
        self.parameter = parameter
        self.report_id = report_id
        super().__init__(f'Required parameter "{parameter}" is missing')
