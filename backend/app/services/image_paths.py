"""
Billow Backend — Image Path Reviser
====================================

What:  Merges freshly uploaded image locations into a listing payload.
Why:   Create and update both receive text fields and file parts separately;
       the stored record must point at externally servable URIs.
How:   For every image field with an upload, the field is replaced by
       `<base_url>/<storage_path>`. Every other key keeps the caller's value.

Pure functions: no I/O, inputs are never mutated, no key of `body` is dropped.
`storage_path_of` maps a stored URL back to its file when the image is replaced
or its home deleted.
"""

from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from app.models.home import IMAGE_FIELDS
from app.services.file_service import UPLOADS_URL_PREFIX, UploadedFile


def public_url(base_url: str, storage_path: str) -> str:
    """Join a host prefix and a storage path with exactly one slash."""
    return f"{base_url.rstrip('/')}/{storage_path.lstrip('/')}"


def revise_image_paths(
    uploads: Mapping[str, UploadedFile],
    base_url: str,
    body: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Return a copy of `body` with uploaded image fields rewritten to URIs.

    Args:
        uploads:  Uploaded files keyed by form field name. Keys that are not
                  image fields are ignored.
        base_url: Host prefix, e.g. "https://api.example.com".
        body:     Caller-supplied fields (create form or update patch).

    Example:
        >>> revise_image_paths(
        ...     {"agent_img": UploadedFile("agent_img", "uploads/a.jpg", "me.jpg")},
        ...     "http://h",
        ...     {"price": 1, "agent_img": "old"},
        ... )
        {'price': 1, 'agent_img': 'http://h/uploads/a.jpg'}
    """
    revised = dict(body)
    for field in IMAGE_FIELDS:
        upload = uploads.get(field)
        if upload is not None:
            revised[field] = public_url(base_url, upload.storage_path)
    return revised


def storage_path_of(url: str) -> Optional[str]:
    """
    Inverse of `public_url`: the storage path behind a served image URL.

    None when the URL does not point into the uploads area (e.g. an image
    hosted elsewhere), so callers never touch files they did not store.
    """
    path = urlsplit(url).path
    if not path.startswith(f"/{UPLOADS_URL_PREFIX}/"):
        return None
    return path.lstrip("/")
