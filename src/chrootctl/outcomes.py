"""Success detection for the commands chrootctl runs.

Scripts do not agree on how they report success: most use their exit code,
the hotspot script prints ``AP-ENABLED`` once the access point is up, and the
forward-NAT script prints its routing summary. Each action therefore names
an :class:`OutcomeClassifier`; the textual markers live only here and in
:mod:`chrootctl.probes`.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .executor import CommandResult

HOTSPOT_READY_MARKER = "AP-ENABLED"
FORWARDING_READY_MARKERS = ("Localhost routing active", "Gateway:")
WARNING_WORDS = ("warn", "WARN", "warning")

FORWARDING_STOP_WARNINGS = "⚠ Forwarding cleanup completed with warnings"
FORWARDING_STOP_PARTIAL = "⚠ Forwarding stop completed (some rules may not have existed)"


class Verdict(str, Enum):
    """How an operation ended."""

    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"


@dataclass(frozen=True)
class Outcome:
    """Classifier verdict plus an optional summary line."""

    verdict: Verdict
    summary: str | None = None

    @property
    def ok(self) -> bool:
        """Return ``True`` unless the verdict is a failure."""
        return self.verdict is not Verdict.FAILURE


class OutcomeClassifier(Protocol):
    """Turns a command result and its output into an :class:`Outcome`."""

    def classify(self, result: CommandResult, output: str) -> Outcome:
        """Return the verdict for *result* given the captured *output*."""
        ...


class ExitCodeClassifier:
    """Success iff the command exited with status zero.

    *failure_template* may reference ``{exit_code}`` to build the failure
    summary.
    """

    def __init__(self, failure_template: str | None = None) -> None:
        """Optionally format failures with *failure_template*."""
        self.failure_template = failure_template

    def classify(self, result: CommandResult, output: str) -> Outcome:
        """Trust the exit status."""
        if result.success:
            return Outcome(Verdict.SUCCESS)
        if self.failure_template is None:
            return Outcome(Verdict.FAILURE)
        code = result.exit_code if result.exit_code else "unknown"
        return Outcome(Verdict.FAILURE, self.failure_template.format(exit_code=code))


class MarkerClassifier:
    """Success iff any of the markers appears in the output.

    The exit status is ignored: scripts invoked with ``2>&1`` may exit
    non-zero after printing their ready marker.
    """

    def __init__(self, markers: Sequence[str]) -> None:
        """Match any entry of *markers* verbatim."""
        if not markers:
            raise ValueError("MarkerClassifier needs at least one marker")
        self.markers = tuple(markers)

    def classify(self, result: CommandResult, output: str) -> Outcome:
        """Look for a marker in *output*, the result output and its error text."""
        haystack = "\n".join(part for part in (output, result.output, result.error or "") if part)
        if any(marker in haystack for marker in self.markers):
            return Outcome(Verdict.SUCCESS)
        return Outcome(Verdict.FAILURE)


class LenientStopClassifier:
    """Exit-code classifier that downgrades failure to a warning.

    Used for teardown scripts whose non-zero exit usually means some rules
    were already gone.
    """

    def __init__(
        self,
        *,
        warned_summary: str = FORWARDING_STOP_WARNINGS,
        partial_summary: str = FORWARDING_STOP_PARTIAL,
        warning_words: Sequence[str] = WARNING_WORDS,
    ) -> None:
        """Configure the two warning summaries and the words that select them."""
        self.warned_summary = warned_summary
        self.partial_summary = partial_summary
        self.warning_words = tuple(warning_words)

    def classify(self, result: CommandResult, output: str) -> Outcome:
        """Succeed on exit zero, otherwise report one of the warning summaries."""
        if result.success:
            return Outcome(Verdict.SUCCESS)
        text = output or result.output
        if any(word in text for word in self.warning_words):
            return Outcome(Verdict.WARNING, self.warned_summary)
        return Outcome(Verdict.WARNING, self.partial_summary)


def hotspot_started() -> MarkerClassifier:
    """Classifier for ``start-hotspot``."""
    return MarkerClassifier((HOTSPOT_READY_MARKER,))


def forwarding_started() -> MarkerClassifier:
    """Classifier for ``forward-nat.sh -i``."""
    return MarkerClassifier(FORWARDING_READY_MARKERS)


__all__ = [
    "ExitCodeClassifier",
    "FORWARDING_READY_MARKERS",
    "FORWARDING_STOP_PARTIAL",
    "FORWARDING_STOP_WARNINGS",
    "HOTSPOT_READY_MARKER",
    "LenientStopClassifier",
    "MarkerClassifier",
    "Outcome",
    "OutcomeClassifier",
    "Verdict",
    "forwarding_started",
    "hotspot_started",
]
