"""
Billow Backend — Uploaded Image Route
======================================

What:  Serves stored listing images under /uploads/{path}.
Why:   Home documents carry absolute image URLs pointing at this route; the
       storage directory itself is not in any web root.
How:   FileService.resolve maps the URL path back into STORAGE_ROOT and
       rejects anything that would escape it.
"""

import mimetypes

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from app.dependencies import get_file_service
from app.exceptions import NotFoundError
from app.services.file_service import UPLOADS_URL_PREFIX, FileService

router = APIRouter(tags=["Uploads"])


@router.get(
    f"/{UPLOADS_URL_PREFIX}/{{file_path:path}}",
    summary="Serve uploaded listing images",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Invalid path"},
        404: {"description": "File not found"},
    },
)
async def serve_upload(
    file_path: str,
    file_service: FileService = Depends(get_file_service),
) -> FileResponse:
    full_path = file_service.resolve(file_path)
    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=file_path)

    media_type, _ = mimetypes.guess_type(full_path.name)
    return FileResponse(
        path=str(full_path),
        media_type=media_type or "application/octet-stream",
        # Filenames are UUIDs; content never changes
        headers={"Cache-Control": "public, max-age=86400, immutable"},
    )
