"""Error taxonomy shared by every stage of the pipeline.

Per-item errors (one file, one section) are converted into status markers by
the engines; structural errors (index unreadable, persist failed) propagate.
"""


class RagReportError(Exception):
    """Base class for all errors raised by ragreport."""


class NotFoundError(RagReportError):
    """A workspace, index, results log or blob does not exist."""


class WorkspaceExistsError(RagReportError):
    """A workspace with the requested name already exists."""


class UnsupportedFormatError(RagReportError):
    """The file extension has no document loader."""


class DocumentLoadError(RagReportError):
    """A supported document could not be parsed."""


class ProviderError(RagReportError):
    """An embedding or completion provider call failed."""


class PersistenceError(RagReportError):
    """Persisted state could not be written or is inconsistent."""


class ValidationError(RagReportError):
    """Caller input was rejected before any work started."""
