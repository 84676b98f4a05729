"""Exception types raised by the chat pipeline.

Everything the pipeline can fail with derives from :class:`PipelineError` so
the SSE handler can convert any of them into the ``error``/``done`` pair.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures inside a single chat turn."""


class ProviderConfigError(PipelineError):
    """Missing credential or unknown model selector; raised before streaming."""


class ProviderRequestError(PipelineError):
    """The backend rejected the request before any text was produced."""


class ProviderStreamError(PipelineError):
    """The backend failed after streaming had started."""


class PersistenceError(PipelineError):
    """Writing the assistant turn, its files or its artifact failed."""
