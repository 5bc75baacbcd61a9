"""
Exception taxonomy for the prospecting pipeline.

Only QuotaExceeded, SearchFailed, UpsertInterrupted and RunPersistenceError
end a request with a non-success response. Provider errors in the enrichment
stages are recorded on the run and never propagate.
"""


class ProspectorError(Exception):
    """Base class for all pipeline errors."""


class QuotaExceeded(ProspectorError):
    """Request scope exceeds the configured area / per-area / total limits."""

    def __init__(self, message, limit=None, requested=None):
        self.limit = limit
        self.requested = requested
        super().__init__(message)


class ProviderError(ProspectorError):
    """An external provider call failed (HTTP error, empty body, success=false)."""

    def __init__(self, message, service=None, status_code=None):
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class ProviderTimeout(ProviderError):
    """An external provider call exceeded its timeout."""


class MalformedResponse(ProviderError):
    """Provider answered with a body that could not be decoded."""


class SearchFailed(ProspectorError):
    """Every search area failed, so the run has no leads to work with."""

    def __init__(self, message, area_errors=None):
        self.area_errors = area_errors or []
        super().__init__(message)


class RunPersistenceError(ProspectorError):
    """The PipelineRun record could not be created or saved."""


class UpsertInterrupted(ProspectorError):
    """Storing search results broke off; `result` holds what was committed."""

    def __init__(self, message, result=None):
        self.result = result
        super().__init__(message)
