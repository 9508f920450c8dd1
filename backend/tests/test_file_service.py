"""
Billow Backend — File Service Unit Tests
=========================================

What:  Tests for FileService validation, staging and path resolution.
Why:   Uploads are a security boundary; every check must hold.
How:   Temporary storage directories; MIME detection is patched where the
       test is about something else.

Test Strategy:
    ✅ allowed/rejected extensions
    ✅ size limits and empty files
    ✅ date-organized UUID storage paths under "uploads/"
    ✅ a failing part removes the parts already staged
    ✅ resolve() refuses paths outside the storage root
"""

from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from starlette.datastructures import UploadFile

from app.config import settings
from app.exceptions import ValidationError
from app.services.file_service import FileService


def _upload(name: str, content: bytes) -> UploadFile:
    return UploadFile(file=BytesIO(content), filename=name, size=len(content))


class TestFileValidation:
    """Tests for file validation logic in FileService."""

    @pytest.fixture(autouse=True)
    def _service(self, temp_storage):
        self.service = FileService(storage_root=temp_storage)

    # ── Extension Validation ──────────────────────────────────────────────

    @pytest.mark.parametrize("filename", ["photo.jpg", "photo.jpeg", "photo.png", "photo.webp"])
    def test_allowed_extensions(self, filename):
        assert self.service.validate_extension(filename) == Path(filename).suffix

    def test_validate_extension_uppercase(self):
        assert self.service.validate_extension("photo.JPG") == ".jpg"
        assert self.service.validate_extension("photo.Jpeg") == ".jpeg"

    @pytest.mark.parametrize("filename", ["animation.gif", "document.pdf", "noextension", "malware.exe"])
    def test_rejected_extensions(self, filename):
        with pytest.raises(ValidationError, match="not supported"):
            self.service.validate_extension(filename, "house_img_main")

    # ── Size Validation ───────────────────────────────────────────────────

    def test_validate_size_within_limit(self):
        self.service.validate_size(None, 1000)

    def test_validate_size_at_limit(self):
        self.service.validate_size(settings.max_file_size, settings.max_file_size)

    def test_validate_size_over_limit(self):
        with pytest.raises(ValidationError, match="too large"):
            self.service.validate_size(None, settings.max_file_size + 1)

    def test_validate_size_reported_over_limit(self):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(settings.max_file_size + 1, 10)

    def test_validate_size_empty_file(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(0, 0)

    # ── MIME Validation ───────────────────────────────────────────────────

    def test_mime_rejects_non_image(self):
        fake_magic = MagicMock()
        fake_magic.from_buffer.return_value = "application/pdf"
        with patch.dict("sys.modules", {"magic": fake_magic}):
            with pytest.raises(ValidationError, match="not supported"):
                self.service.validate_mime_type(b"%PDF-1.4", "fake.jpg", "agent_img")


class TestFileStorage:

    @pytest.fixture(autouse=True)
    def _service(self, temp_storage):
        self.service = FileService(storage_root=temp_storage)
        self.storage_root = Path(temp_storage).resolve()

    @pytest.mark.asyncio
    async def test_validate_and_store_creates_date_directory(self, sample_image_bytes):
        with patch.object(self.service, "validate_mime_type", return_value="image/jpeg"):
            uploaded = await self.service.validate_and_store(
                field_name="house_img_main",
                filename="front.jpg",
                content=sample_image_bytes,
                content_length=len(sample_image_bytes),
            )

        today = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        assert uploaded.field_name == "house_img_main"
        assert uploaded.original_name == "front.jpg"
        assert uploaded.storage_path.startswith(f"uploads/{today}/")
        assert uploaded.storage_path.endswith(".jpg")
        assert self.service.resolve(uploaded.storage_path).read_bytes() == sample_image_bytes

    @pytest.mark.asyncio
    async def test_stage_uploads_keys_by_field(self, sample_image_bytes):
        files = {
            "agent_img": _upload("me.jpg", sample_image_bytes),
            "house_img_main": _upload("front.jpg", sample_image_bytes),
        }
        with patch.object(self.service, "validate_mime_type", return_value="image/jpeg"):
            staged = await self.service.stage_uploads(files)

        assert set(staged) == {"agent_img", "house_img_main"}
        for uploaded in staged.values():
            assert self.service.resolve(uploaded.storage_path).exists()

    @pytest.mark.asyncio
    async def test_stage_uploads_failure_removes_staged_files(self, sample_image_bytes):
        files = {
            "agent_img": _upload("me.jpg", sample_image_bytes),
            "house_img_main": _upload("virus.exe", sample_image_bytes),
        }
        with patch.object(self.service, "validate_mime_type", return_value="image/jpeg"):
            with pytest.raises(ValidationError):
                await self.service.stage_uploads(files)

        assert [p for p in self.storage_root.rglob("*") if p.is_file()] == []

    @pytest.mark.asyncio
    async def test_discard_removes_files(self, sample_image_bytes):
        with patch.object(self.service, "validate_mime_type", return_value="image/jpeg"):
            staged = await self.service.stage_uploads({"agent_img": _upload("me.jpg", sample_image_bytes)})

        await self.service.discard(staged)
        assert not self.service.resolve(staged["agent_img"].storage_path).exists()

    # ── Path Resolution ───────────────────────────────────────────────────

    def test_resolve_strips_url_prefix(self):
        assert self.service.resolve("uploads/2026/01/01/a.jpg") == self.storage_root / "2026/01/01/a.jpg"

    def test_resolve_rejects_traversal(self):
        with pytest.raises(ValidationError, match="Invalid file path"):
            self.service.resolve("uploads/../../etc/passwd")

    @pytest.mark.asyncio
    async def test_discard_paths_removes_stored_files(self, sample_image_bytes):
        with patch.object(self.service, "validate_mime_type", return_value="image/jpeg"):
            staged = await self.service.stage_uploads({"agent_img": _upload("me.jpg", sample_image_bytes)})
        path = staged["agent_img"].storage_path

        await self.service.discard_paths([path])
        assert not self.service.resolve(path).exists()

    @pytest.mark.asyncio
    async def test_discard_paths_skips_traversal(self, tmp_path):
        outside = tmp_path / "outside.jpg"
        outside.write_bytes(b"keep")

        await self.service.discard_paths(["uploads/../outside.jpg"])
        assert outside.exists()

    # ── Cleanup ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cleanup_file_removes_file(self, tmp_path):
        test_file = tmp_path / "test.jpg"
        test_file.write_bytes(b"test content")

        await self.service.cleanup_file(str(test_file))
        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_file_nonexistent(self, tmp_path):
        await self.service.cleanup_file(str(tmp_path / "nonexistent.jpg"))
