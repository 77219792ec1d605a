"""Structure documents served to clients in structure mode.

A structure document is a static description of the installation (for
example its floors and rooms) that clients render independently of live
state. It is served verbatim; only its top-level shape is validated.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

log = structlog.get_logger()


class StructureDocument(BaseModel):
    """Top-level shape of a structure document."""

    model_config = ConfigDict(extra="allow")

    floors: list[dict[str, Any]] = Field(default_factory=list)
    """Floors in display order; contents are client-defined."""


def read_structure_file(path: Path) -> dict[str, Any]:
    """Read and validate a structure document from JSON or YAML.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file cannot be parsed or has the wrong shape
    """
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Cannot parse structure file {path}: {e}") from e
    return validate_structure(data)


def validate_structure(data: Any) -> dict[str, Any]:
    """Validate a structure document and return it as a plain dict.

    Raises:
        ValueError: If the document has no list of floors
    """
    try:
        return StructureDocument.model_validate(data).model_dump()
    except ValidationError as e:
        raise ValueError(f"Invalid structure document: {e}") from e


class StructureSource:
    """Provides the current structure document.

    The document comes either from embedded configuration or from a file.
    With ``reload`` enabled a file-backed source is re-read on every
    request so edits show up without a restart; if a re-read fails the
    last good document is served.
    """

    def __init__(
        self,
        document: dict[str, Any] | None = None,
        path: Path | None = None,
        reload: bool = False,
    ) -> None:
        """Initialize and load the document once.

        Args:
            document: Embedded structure document
            path: File holding the document
            reload: Re-read the file on every request

        Raises:
            ValueError: If neither or both sources are given, or the
                initial document is invalid
            FileNotFoundError: If the file doesn't exist
        """
        if (document is None) == (path is None):
            raise ValueError("Exactly one of 'document' or 'path' is required")

        self._path = path
        self._reload = reload and path is not None
        if path is not None:
            self._document = read_structure_file(path)
        else:
            self._document = validate_structure(document)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def reloads(self) -> bool:
        """Whether the document is re-read per request."""
        return self._reload

    def current(self) -> dict[str, Any]:
        """Return the document, re-reading it first if configured to."""
        if self._reload and self._path is not None:
            try:
                self._document = read_structure_file(self._path)
            except (OSError, ValueError) as e:
                log.warning("Structure reload failed", path=str(self._path), error=str(e))
        return self._document
