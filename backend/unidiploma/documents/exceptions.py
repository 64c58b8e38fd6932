"""Error taxonomy of the diploma document pipeline.

Codec and compositor raise these (or return tagged decode results); the
orchestrator decides which ones reach the caller. The HTTP layer maps every
``PipelineError`` to ``{"detail", "code", "retryable"}`` with ``status``.
"""
from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    status: int = 500
    code: str = "PIPELINE_ERROR"
    retryable: bool = False

    def __init__(self, message: str, *, code: str | None = None, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra or {}


class InputError(PipelineError):
    """Missing field, unknown reference or wrong file type, rejected before any I/O."""

    status = 422
    code = "INVALID_INPUT"


class PermissionDeniedError(PipelineError):
    status = 403
    code = "PERMISSION_DENIED"


class NotFoundError(PipelineError):
    status = 404
    code = "NOT_FOUND"


class InvalidTransitionError(PipelineError):
    status = 409
    code = "INVALID_TRANSITION"


class AlreadyAuthenticatedError(InvalidTransitionError):
    code = "ALREADY_AUTHENTICATED"


class AssetError(PipelineError):
    """A branding image could not be read or fetched."""

    code = "ASSET_UNAVAILABLE"


class CompositionError(PipelineError):
    """The PDF library failed to build the document."""

    code = "COMPOSITION_FAILED"


class GatewayError(PipelineError):
    """Record or blob store failure."""

    status = 502
    code = "GATEWAY_ERROR"


class GatewayTimeoutError(GatewayError):
    status = 504
    code = "GATEWAY_TIMEOUT"
    retryable = True
