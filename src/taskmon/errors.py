"""Exception types raised by the taskmon core."""


class TaskmonError(Exception):
    """Base class for all taskmon errors."""


class EnumerationFailure(TaskmonError):
    """The process list as a whole could not be read."""


class InvalidCriterion(TaskmonError, ValueError):
    """A filter criterion or search query is malformed."""


class InvalidSignal(TaskmonError, ValueError):
    """A signal identifier does not name a supported signal."""
