"""
Billow Backend — Upload Staging Service
========================================

What:  Validates listing images and writes them to durable storage.
Why:   Create and update accept up to four image parts; each must be checked
       and stored before the listing row references it.
How:   Extension → size → MIME checks, then an async write into a
       date-organized directory under a UUID filename.
Who:   Called by the homes routes; results feed the image path reviser.

Security Model:
    1. Extension check:  fast rejection of obviously wrong files
    2. Size check:       bounded memory use
    3. MIME type check:  magic bytes catch renamed files
    4. UUID filename:    no user input in paths (no traversal, no collisions)

Every stored file is described by an `UploadedFile` record:
    field_name     form part it arrived in (e.g. "house_img_main")
    storage_path   servable path, "uploads/YYYY/MM/DD/<uuid>.<ext>"
    original_name  client filename, kept for logs only
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple

import aiofiles
from starlette.datastructures import UploadFile

from app.config import settings
from app.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

# URL segment under which stored files are served (see routes/uploads.py)
UPLOADS_URL_PREFIX = "uploads"

ALLOWED_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
}

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}


@dataclass(frozen=True)
class UploadedFile:
    """A staged upload, keyed by the form field it arrived in."""

    field_name: str
    storage_path: str
    original_name: str


class FileService:
    """
    Manages upload validation, storage and cleanup.

    Directory Structure:
        uploads/
        └── 2024/
            └── 01/
                └── 15/
                    ├── a1b2c3d4-5678.jpg
                    └── e5f6g7h8-9012.png
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
                          If None, uses settings.storage_root.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    def validate_extension(self, filename: str, field: str = "file") -> str:
        """
        Validate file extension (first line of defense).

        Returns: Normalized extension (lowercase with dot).
        Raises:  ValidationError if extension is not allowed.
        """
        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext}' is not supported for '{field}'. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field=field,
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int, field: str = "file") -> None:
        """
        Validate file size against configured maximum.

        Content-Length is checked first because some clients send it honestly
        and it costs nothing; the actual byte count is authoritative.
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message=f"Uploaded file for '{field}' is empty.",
                field=field,
            )

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File for '{field}' exceeds maximum of {max_mb:.0f}MB.",
                field=field,
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=(
                    f"File for '{field}' ({actual_size / (1024 * 1024):.1f}MB) "
                    f"is too large; maximum is {max_mb:.0f}MB."
                ),
                field=field,
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_mime_type(self, file_content: bytes, filename: str, field: str = "file") -> str:
        """
        Validate actual MIME type by inspecting file content bytes.

        How:     python-magic matches the leading bytes against known
                 signatures (JPEG starts with FF D8 FF, PNG with 89 50 4E 47).
        Returns: Detected MIME type string.
        Raises:  ValidationError if the type is not an allowed image type.
        """
        try:
            import magic
            mime_type = magic.from_buffer(file_content, mime=True)
        except ImportError:
            # libmagic missing (e.g. minimal CI image): trust the extension
            logger.warning(
                "python-magic not available — falling back to extension-based type detection."
            )
            ext = Path(filename).suffix.lower()
            mime_map = {
                ".png": "image/png",
                ".jpg": "image/jpeg",
                ".jpeg": "image/jpeg",
                ".webp": "image/webp",
            }
            mime_type = mime_map.get(ext, "application/octet-stream")
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' is not supported for '{field}'. "
                    f"Upload a PNG, JPEG or WebP image."
                ),
                field=field,
                context={"detected_mime": mime_type, "allowed": list(ALLOWED_MIME_TYPES)},
            )

        return mime_type

    def _generate_storage_path(self, extension: str) -> Tuple[Path, str]:
        """
        Creates a YYYY/MM/DD/<uuid>.<ext> path.

        Returns: (absolute_path, path_relative_to_storage_root)
        """
        now = datetime.now(timezone.utc)
        date_dir = now.strftime("%Y/%m/%d")
        unique_name = f"{uuid.uuid4()}{extension}"

        relative_path = f"{date_dir}/{unique_name}"
        absolute_path = self.storage_root / relative_path

        return absolute_path, relative_path

    async def store_file(self, content: bytes, extension: str) -> Tuple[str, str]:
        """
        Write validated file content to disk.

        Returns: (absolute_path, relative_path)
        Raises:  FileStorageError if directory creation or file write fails.
        """
        absolute_path, relative_path = self._generate_storage_path(extension)

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)

            logger.info("File stored: %s (%d bytes)", relative_path, len(content))
            return str(absolute_path), relative_path

        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

    async def cleanup_file(self, file_path: str) -> None:
        """
        Remove a file from storage (best-effort).

        Missing files are fine; other failures are logged, never raised,
        because cleanup runs on paths that already failed.
        """
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
            else:
                logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))

    async def validate_and_store(
        self,
        field_name: str,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> UploadedFile:
        """
        Complete validation and storage pipeline for one image part.

        Validation order (cheapest first):
            1. Extension check
            2. Size check
            3. MIME type check
            4. Store file
        """
        ext = self.validate_extension(filename, field_name)
        self.validate_size(content_length, len(content), field_name)
        self.validate_mime_type(content, filename, field_name)
        _, relative_path = await self.store_file(content, ext)

        return UploadedFile(
            field_name=field_name,
            storage_path=f"{UPLOADS_URL_PREFIX}/{relative_path}",
            original_name=filename,
        )

    async def stage_uploads(self, files: Mapping[str, UploadFile]) -> Dict[str, UploadedFile]:
        """
        Validate and store every file part of a request.

        What:    Returns a mapping field name → UploadedFile.
        How:     Parts are processed in order; if any part fails, the parts
                 already written are removed before the error propagates, so a
                 rejected request leaves no orphaned files behind.
        """
        staged: Dict[str, UploadedFile] = {}
        try:
            for field_name, upload in files.items():
                content = await upload.read()
                staged[field_name] = await self.validate_and_store(
                    field_name=field_name,
                    filename=upload.filename or f"{field_name}.jpg",
                    content=content,
                    content_length=upload.size,
                )
        except Exception:
            await self.discard(staged)
            raise
        finally:
            for upload in files.values():
                await upload.close()
        return staged

    async def discard(self, staged: Mapping[str, UploadedFile]) -> None:
        """Remove previously staged files, e.g. after the database rejected the listing."""
        await self.discard_paths(uploaded.storage_path for uploaded in staged.values())

    async def discard_paths(self, storage_paths: Iterable[str]) -> None:
        """
        Remove stored files by storage path (best-effort, like cleanup_file).

        Used for images a committed update replaced or a delete orphaned.
        A path that would escape storage_root is logged and skipped.
        """
        for storage_path in storage_paths:
            try:
                full_path = self.resolve(storage_path)
            except ValidationError:
                logger.warning("Refusing to remove file outside storage: %s", storage_path)
                continue
            await self.cleanup_file(str(full_path))

    def resolve(self, storage_path: str) -> Path:
        """
        Map a servable storage path back to an absolute file path.

        Raises ValidationError if the result would escape storage_root
        (path traversal such as "uploads/../../etc/passwd").
        """
        relative = storage_path
        prefix = f"{UPLOADS_URL_PREFIX}/"
        if relative.startswith(prefix):
            relative = relative[len(prefix):]
        full_path = (self.storage_root / relative).resolve()
        if not full_path.is_relative_to(self.storage_root):
            raise ValidationError(message="Invalid file path", field="path")
        return full_path
