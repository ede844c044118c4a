"""Storage abstraction layer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, BinaryIO


class AbstractStorage(ABC):
    """Interface for storage backends holding guides, submissions and previews."""

    @abstractmethod
    def save(self, file_obj: IO[bytes], filename: str) -> str:
        """Persist a file and return the stored name."""

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Return whether the given stored name exists."""

    @abstractmethod
    def open(self, name: str, mode: str = "rb") -> BinaryIO:
        """Open a stored file and return the file object."""

    @abstractmethod
    def path_for(self, name: str) -> Path:
        """Return the absolute path of a stored name."""
