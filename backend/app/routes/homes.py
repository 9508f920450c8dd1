"""
Billow Backend — Homes Route Handlers
======================================

What:  HTTP surface for listings.
How:   Each handler extracts request data, calls HomeService, and shapes the
       response. Errors are raised, never caught here; the global handlers in
       main.py format them.

Routes:
    GET    /homes                 paginated list (?page, ?limit)
    GET    /homes/search/{term}   ranked search; 404 "no_results" when empty
    GET    /homes/{id}            single home through the cache
    POST   /homes/new             create (auth, multipart with four images)
    PATCH  /homes/update          partial update by streetQuery (auth)
    DELETE /homes/delete          delete by streetQuery (auth)
    DELETE /homes/{id}            delete by id (auth)

Update bodies may be multipart/form-data (when replacing images) or JSON.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from app.auth import require_auth
from app.config import settings
from app.dependencies import get_base_url, get_file_service, get_home_service
from app.exceptions import ValidationError
from app.middleware.request_id import request_id_var
from app.models.home import IMAGE_FIELDS
from app.sanitize import sanitize_text
from app.schemas.home import (
    ErrorResponse,
    HomeCreate,
    HomeCreatedResponse,
    HomePage,
    HomeResponse,
    HomeUpdate,
    MessageResponse,
    MutationResponse,
    StreetQuery,
)
from app.services.file_service import FileService
from app.services.home_service import HomeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/homes", tags=["Homes"])

ModelT = TypeVar("ModelT", bound=BaseModel)


# ══════════════════════════════════════════════════════════════════════════
# Body parsing helpers
# ══════════════════════════════════════════════════════════════════════════


def parse_model(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """
    Validate a hand-read body against `model`.

    Pydantic errors become our ValidationError (400) listing every bad field,
    the same shape as other client errors.
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "body",
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        first = errors[0]
        raise ValidationError(
            message=f"Invalid value for '{first['field']}': {first['message']}",
            field=first["field"],
            context={"errors": errors},
        )


async def read_body(request: Request) -> Tuple[Dict[str, Any], Dict[str, UploadFile]]:
    """
    Split a request body into text fields and image parts.

    JSON bodies carry no files. For form bodies each image field accepts at
    most one file; file parts under any other name are rejected, and empty
    file inputs (no filename) are ignored.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError(message="Request body is not valid JSON", field="body")
        if not isinstance(body, dict):
            raise ValidationError(message="Request body must be a JSON object", field="body")
        return body, {}

    form = await request.form()
    fields: Dict[str, Any] = {}
    files: Dict[str, UploadFile] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if not value.filename:
                continue
            if key not in IMAGE_FIELDS:
                raise ValidationError(message=f"Unexpected file field '{key}'", field=key)
            if key in files:
                raise ValidationError(message=f"Only one file is accepted for '{key}'", field=key)
            files[key] = value
        else:
            fields[key] = value
    return fields, files


# ══════════════════════════════════════════════════════════════════════════
# Public reads
# ══════════════════════════════════════════════════════════════════════════


@router.get(
    "",
    response_model=HomePage,
    response_model_exclude_none=True,
    summary="List homes",
    description=(
        "Homes in insertion order, `limit` per page. `previous`/`next` are "
        "present only when such a page exists. A page past the end is empty."
    ),
)
async def list_homes(
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: Optional[int] = Query(
        default=None, ge=1, le=settings.max_page_limit,
        description="Homes per page (defaults to DEFAULT_PAGE_LIMIT, at most MAX_PAGE_LIMIT)",
    ),
    service: HomeService = Depends(get_home_service),
) -> HomePage:
    return await service.list_homes(page=page, limit=limit or settings.default_page_limit)


@router.get(
    "/search/{term:path}",
    response_model=List[HomeResponse],
    responses={
        200: {"description": "Matching homes, most relevant first"},
        404: {"description": "Nothing matched", "model": ErrorResponse},
    },
    summary="Full-text search",
)
async def search_homes(
    term: str,
    service: HomeService = Depends(get_home_service),
):
    """
    Search street, city, state, zip and description.

    The term is stripped of markup before use. Zero matches is answered with
    404 and an explanatory message (not a server error).
    """
    cleaned = sanitize_text(term)
    if not cleaned:
        raise ValidationError(message="Search term must not be empty", field="term")

    results = await service.search_homes(cleaned)
    if not results:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "no_results",
                "message": f"No homes match '{cleaned}'",
                "request_id": request_id_var.get(""),
            },
        )
    return results


@router.get(
    "/{home_id}",
    response_model=HomeResponse,
    responses={404: {"description": "Home not found", "model": ErrorResponse}},
    summary="Get a single home",
)
async def get_home(
    home_id: UUID,
    service: HomeService = Depends(get_home_service),
) -> HomeResponse:
    """Served from Redis when cached, otherwise from the database (then cached)."""
    return await service.get_home(home_id)


# ══════════════════════════════════════════════════════════════════════════
# Authenticated writes
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "/new",
    status_code=status.HTTP_201_CREATED,
    response_model=HomeCreatedResponse,
    responses={
        400: {"description": "Missing fields or images", "model": ErrorResponse},
        401: {"description": "Auth failed", "model": ErrorResponse},
    },
    summary="Create a home",
    description=(
        "multipart/form-data with every listing field plus four image parts: "
        "agent_img, house_img_main, house_img_inside_1, house_img_inside_2."
    ),
)
async def create_home(
    request: Request,
    claims: Dict[str, Any] = Depends(require_auth),
    service: HomeService = Depends(get_home_service),
    file_service: FileService = Depends(get_file_service),
    base_url: str = Depends(get_base_url),
) -> HomeCreatedResponse:
    fields, files = await read_body(request)
    form = parse_model(HomeCreate, fields)
    uploads = await file_service.stage_uploads(files)

    home = await service.create_home(form, uploads, base_url)
    logger.info("Home %s created by %s", home.id, claims.get("sub", "<unknown>"))
    return HomeCreatedResponse(home=home)


@router.patch(
    "/update",
    response_model=MutationResponse,
    responses={
        400: {"description": "Missing streetQuery or invalid fields", "model": ErrorResponse},
        401: {"description": "Auth failed", "model": ErrorResponse},
        409: {"description": "Several homes match (unique policy)", "model": ErrorResponse},
    },
    summary="Update a home by street",
    description=(
        "`streetQuery` selects the home; any other listing field given is "
        "overwritten, the rest are kept. Image parts replace the matching "
        "image. `matched` is 0 when no home has that street."
    ),
)
async def update_home(
    request: Request,
    claims: Dict[str, Any] = Depends(require_auth),
    service: HomeService = Depends(get_home_service),
    file_service: FileService = Depends(get_file_service),
    base_url: str = Depends(get_base_url),
) -> MutationResponse:
    fields, files = await read_body(request)
    selector = parse_model(StreetQuery, {"streetQuery": fields.pop("streetQuery", None)})
    patch = parse_model(HomeUpdate, fields)
    uploads = await file_service.stage_uploads(files)

    matched = await service.update_home(selector.street_query, patch, uploads, base_url)
    logger.info(
        "Update on '%s' by %s matched %d home(s)",
        selector.street_query, claims.get("sub", "<unknown>"), matched,
    )
    return MutationResponse(message="Home updated!", matched=matched)


@router.delete(
    "/delete",
    response_model=MutationResponse,
    responses={
        401: {"description": "Auth failed", "model": ErrorResponse},
        409: {"description": "Several homes match (unique policy)", "model": ErrorResponse},
    },
    summary="Delete a home by street",
)
async def delete_home(
    body: StreetQuery,
    claims: Dict[str, Any] = Depends(require_auth),
    service: HomeService = Depends(get_home_service),
) -> MutationResponse:
    matched = await service.delete_home(body.street_query)
    logger.info(
        "Delete on '%s' by %s matched %d home(s)",
        body.street_query, claims.get("sub", "<unknown>"), matched,
    )
    return MutationResponse(message="Home deleted!", matched=matched)


@router.delete(
    "/{home_id}",
    response_model=MessageResponse,
    responses={
        401: {"description": "Auth failed", "model": ErrorResponse},
        404: {"description": "Home not found", "model": ErrorResponse},
    },
    summary="Delete a home by id",
)
async def delete_home_by_id(
    home_id: UUID,
    claims: Dict[str, Any] = Depends(require_auth),
    service: HomeService = Depends(get_home_service),
) -> MessageResponse:
    await service.delete_home_by_id(home_id)
    logger.info("Home %s deleted by %s", home_id, claims.get("sub", "<unknown>"))
    return MessageResponse(message="Home deleted!")
