"""Exceptions and shared types for input file parsing."""

from pathlib import Path
from typing import Iterable, Optional


class ParseError(Exception):
    """Exception raised when an input file cannot be parsed."""

    def __init__(self, message: str, file_path: Optional[Path] = None):
        """Initialize ParseError.

        Args:
            message: Error message.
            file_path: Optional path to the file that failed to parse.
        """
        self.file_path = file_path
        super().__init__(message)


class MissingEssentialColumns(ParseError):
    """Raised when date, merchant, or amount columns cannot be identified."""

    def __init__(
        self,
        missing_roles: Iterable[str],
        headers: Optional[list[str]] = None,
        file_path: Optional[Path] = None,
    ):
        """Initialize MissingEssentialColumns.

        Args:
            missing_roles: Roles that could not be resolved.
            headers: Header row of the file.
            file_path: Optional path to the file.
        """
        self.missing_roles = list(missing_roles)
        self.headers = list(headers) if headers is not None else []
        where = f" in {file_path.name}" if file_path is not None else ""
        super().__init__(
            f"Could not identify {', '.join(self.missing_roles)} column(s){where}; "
            f"headers: {self.headers}",
            file_path,
        )
