"""PDF preview generation for submitted work.

Previews are produced off the request path. A failure leaves the order
without a preview, in which case the original bytes are streamed instead.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from storage import LocalStorage

logger = logging.getLogger(__name__)

CONVERTIBLE_EXTENSIONS = {".doc", ".docx", ".odt", ".rtf", ".ppt", ".pptx"}


class ConversionError(RuntimeError):
    pass


class DocumentConverter:
    """Convert office documents to PDF with LibreOffice."""

    def __init__(self, binary: str = "soffice", timeout: float = 120):
        self.binary = binary
        self.timeout = timeout

    def convert(self, source: Path, outdir: Path) -> Path:
        command = [
            self.binary,
            "--headless",
            "--convert-to",
            "pdf",
            "--outdir",
            str(outdir),
            str(source),
        ]
        try:
            subprocess.run(command, check=True, capture_output=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ConversionError(f"{self.binary} is not installed")
        except subprocess.TimeoutExpired:
            raise ConversionError(f"Conversion of {source.name} timed out")
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode(errors="replace").strip()
            raise ConversionError(f"Conversion of {source.name} failed: {stderr or exc}")

        produced = outdir / f"{source.stem}.pdf"
        if not produced.exists():
            raise ConversionError(f"Expected produced PDF not found: {produced}")
        return produced


class PreviewGenerator:
    """Owns the preview directory and the worker pool that fills it."""

    def __init__(
        self,
        uploads: LocalStorage,
        previews: LocalStorage,
        converter: DocumentConverter,
        max_workers: int = 2,
    ):
        self.uploads = uploads
        self.previews = previews
        self.converter = converter
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="preview"
        )
        # order id -> number of the latest scheduled submission
        self._generations: dict[int, int] = {}
        self._lock = threading.Lock()

    def preview_path(self, order_id: int) -> Path:
        return self.previews.path_for(f"{order_id}.pdf")

    def has_preview(self, order_id: int) -> bool:
        return self.preview_path(order_id).is_file()

    def discard(self, order_id: int) -> int:
        """Remove the preview and supersede any job still running for it."""

        with self._lock:
            generation = self._generations.get(order_id, 0) + 1
            self._generations[order_id] = generation
            self.preview_path(order_id).unlink(missing_ok=True)
        return generation

    def _publish(self, order_id: int, produced: Path, generation: int | None) -> Path | None:
        """Move a finished PDF into place unless a newer submission superseded it."""

        target = self.preview_path(order_id)
        with self._lock:
            if generation is not None and generation != self._generations.get(order_id, 0):
                produced.unlink(missing_ok=True)
                logger.info("Dropping stale preview for order %s", order_id)
                return None
            os.replace(produced, target)
        return target

    def generate(self, order_id: int, stored_name: str, generation: int | None = None) -> Path | None:
        """Build ``<order_id>.pdf`` from a stored upload. Raises on failure.

        With ``generation`` the result is kept only if no later submission of
        the order was scheduled meanwhile.
        """

        source = self.uploads.path_for(stored_name)
        extension = source.suffix.lower()

        if extension == ".pdf":
            produced = self.previews.base_directory / f".{uuid.uuid4().hex}.pdf"
            shutil.copyfile(source, produced)
        elif extension in CONVERTIBLE_EXTENSIONS:
            produced = self.converter.convert(source, self.previews.base_directory)
        else:
            logger.info("Uploaded file type not converted to PDF: %s", extension or "<none>")
            return None

        target = self._publish(order_id, produced, generation)
        if target is not None:
            logger.info("Preview saved for order %s", order_id)
        return target

    def _generate_logged(self, order_id: int, stored_name: str, generation: int) -> Path | None:
        try:
            return self.generate(order_id, stored_name, generation)
        except (ConversionError, OSError) as exc:
            logger.error("Preview generation failed for order %s: %s", order_id, exc)
            return None

    def schedule(self, order_id: int, stored_name: str) -> Future:
        """Queue preview generation, dropping any preview of an earlier submission."""

        generation = self.discard(order_id)
        return self._executor.submit(self._generate_logged, order_id, stored_name, generation)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
