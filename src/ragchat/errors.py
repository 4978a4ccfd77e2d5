"""Domain exceptions and degradation records.

Two families:

* **Fail-fast** errors (``ValidationError``) signal programmer error --
  malformed options, bad metric names, unserializable cache values.
  They are never auto-corrected.
* **Upstream** errors (``UpstreamFailure``) wrap a failed or timed-out
  call to the search, embedding or generation collaborator.  The core
  never retries; the caller decides.

``DegradedResult`` is *not* an exception: it records that a component
fell back to a simpler policy (pruning fallback, dropped citation
marker).  Degradations are logged and counted, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Collaborator names (used in UpstreamFailure and metric labels)
# ---------------------------------------------------------------------------

COLLABORATOR_SEARCH = "search"
COLLABORATOR_EMBEDDING = "embedding"
COLLABORATOR_GENERATION = "generation"


class RagChatError(Exception):
    """Base class for all ragchat errors."""


class ValidationError(RagChatError, ValueError):
    """Malformed configuration, metric name, labels or cache value."""


class UpstreamFailure(RagChatError):
    """An external collaborator call failed or timed out."""

    def __init__(
        self,
        collaborator: str,
        message: str,
        *,
        timed_out: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.collaborator = collaborator
        self.timed_out = timed_out
        self.cause = cause

    @property
    def code(self) -> str:
        suffix = "TIMEOUT" if self.timed_out else "FAILED"
        return f"{self.collaborator.upper()}_{suffix}"


@dataclass(frozen=True, slots=True)
class DegradedResult:
    """A component silently fell back to a simpler policy."""

    component: str
    reason: str
    detail: str = ""
