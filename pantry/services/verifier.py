"""Verifier interface and the mapping from raised errors to classified results."""

from __future__ import annotations

import asyncio
from typing import Protocol

from pantry.config import REASON_NOT_FOUND
from pantry.config import REASON_PERMANENTLY_CLOSED
from pantry.config import REASON_TEMPORARILY_CLOSED
from pantry.errors import ConfigurationError
from pantry.errors import PermanentClosureSignal
from pantry.models import CandidateResource
from pantry.models import VerificationOutcome
from pantry.models import VerificationResult


class Verifier(Protocol):
    def verify(self, candidate: CandidateResource) -> VerificationResult: ...


def result_from_exception(exc: BaseException) -> VerificationResult:
    """
    Classify an exception raised by a verifier.

    ConfigurationError is not classified: no record can make progress while it
    holds, so callers must handle it before calling this.
    """
    if isinstance(exc, ConfigurationError):
        raise exc
    if isinstance(exc, PermanentClosureSignal):
        return VerificationResult(
            outcome=VerificationOutcome.PERMANENTLY_CLOSED,
            reason=str(exc) or REASON_PERMANENTLY_CLOSED,
        )
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return VerificationResult(outcome=VerificationOutcome.TRANSIENT_ERROR, reason="API error: timed out")
    message = str(exc) or type(exc).__name__
    return VerificationResult(outcome=VerificationOutcome.TRANSIENT_ERROR, reason=f"API error: {message}")


def failure_reason(result: VerificationResult) -> str:
    """The text persisted as enrichment_failure_reason for a non-verified result."""
    if result.reason:
        return result.reason
    return {
        VerificationOutcome.NOT_FOUND: REASON_NOT_FOUND,
        VerificationOutcome.PERMANENTLY_CLOSED: REASON_PERMANENTLY_CLOSED,
        VerificationOutcome.TEMPORARILY_CLOSED: REASON_TEMPORARILY_CLOSED,
        VerificationOutcome.BLOCKED_CATEGORY: "Blocked category",
        VerificationOutcome.NAME_MISMATCH: "Name mismatch",
    }.get(result.outcome, "Unknown error")
