"""Local filesystem storage implementation."""

from __future__ import annotations

import os
import uuid
from pathlib import Path, PurePosixPath
from typing import IO, BinaryIO

from werkzeug.utils import secure_filename

from .abstract_storage import AbstractStorage


def build_unique_filename(original: str) -> str:
    """Return a collision-free name keeping the original extension."""

    suffix = Path(secure_filename(original or "")).suffix.lower()
    return f"{uuid.uuid4().hex}{suffix}"


class LocalStorage(AbstractStorage):
    """Persist files to the local filesystem under a base directory."""

    def __init__(self, base_directory: str | os.PathLike):
        self.base_directory = Path(base_directory)
        os.makedirs(self.base_directory, exist_ok=True)

    def save(self, file_obj: IO[bytes], filename: str) -> str:
        """Save a file and return its name within the base directory."""

        safe_name = secure_filename(filename)
        if not safe_name:
            raise ValueError("Filename must contain at least one valid character.")

        destination = self.base_directory / safe_name
        if hasattr(file_obj, "save"):
            file_obj.save(destination)  # type: ignore[arg-type]
        else:
            with open(destination, "wb") as output:
                output.write(file_obj.read())

        return safe_name

    def path_for(self, name: str) -> Path:
        """Resolve a stored name, ignoring any directory components."""

        # Stored references look like "/uploads/<name>"; only the last part is ours.
        return self.base_directory / PurePosixPath(name).name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def open(self, name: str, mode: str = "rb") -> BinaryIO:
        return open(self.path_for(name), mode)
