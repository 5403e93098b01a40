"""
Result type shared by every pipeline stage boundary.

A stage always hands back a value; the issues tuple records which inputs
were degraded on the way so callers can inspect partial failure instead of
parsing logs.
"""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


class ProfileConfigurationError(Exception):
    """A weight or threshold table is missing or malformed; raised at startup."""


@dataclass(frozen=True, slots=True)
class StageIssue:
    """One recovered problem inside a stage."""

    stage: str
    source: str
    message: str
    recoverable: bool = True


@dataclass(frozen=True, slots=True)
class StageResult(Generic[T]):
    value: T
    issues: tuple[StageIssue, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def degraded_sources(self) -> tuple[str, ...]:
        return tuple(issue.source for issue in self.issues)

    def with_issues(self, *issues: StageIssue | None) -> "StageResult[T]":
        extra = tuple(issue for issue in issues if issue is not None)
        if not extra:
            return self
        return StageResult(value=self.value, issues=self.issues + extra)
