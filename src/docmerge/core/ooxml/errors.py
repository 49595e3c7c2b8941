"""Exceptions raised by the template engine and its collaborators."""

from __future__ import annotations


class DocmergeError(Exception):
    """Base class for every error surfaced to callers of docmerge."""


class InvalidPackage(DocmergeError, ValueError):
    """Raised when bytes are not an OOXML package the engine can work with."""


class UnsupportedFormat(DocmergeError):
    """Raised when an operation is requested for a package kind it cannot handle."""


class DataSourceError(DocmergeError, ValueError):
    """Raised when tabular input cannot be read into rows."""


class SchemaValidationError(DocmergeError, ValueError):
    """Raised when a JSON document does not conform to its schema."""

    def __init__(self, issues: list[str], *, subject: str = "document"):
        self.subject = subject
        self.issues = [str(i).strip() for i in issues if str(i).strip()]
        if not self.issues:
            self.issues = ["invalid document"]
        super().__init__(self._format())

    def _format(self) -> str:
        lines = [f"{self.subject} validation failed:"]
        for issue in self.issues:
            lines.append(f"- {issue}")
        return "\n".join(lines)
