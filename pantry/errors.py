"""Exception taxonomy shared by the adapters, the orchestrator and the worker."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline errors."""


class TransientVerificationError(PipelineError):
    """Network failure, timeout or not-found; the record is retried later."""


class PermanentClosureSignal(PipelineError):
    """The verifier reports the location permanently closed."""


class ConfigurationError(PipelineError):
    """Missing credentials or settings; no record can make progress."""


class DiscoveryError(PipelineError):
    """A discovery query failed."""
