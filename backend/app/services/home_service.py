"""
Billow Backend — Home Service (Business Logic Orchestrator)
============================================================

What:  The request-facing contract for homes: cached lookup, paging, search,
       create with images, street-matched update/delete.
Why:   Routes stay HTTP-only; cache coherence and upload bookkeeping live here.
How:   Composes a per-request HomeStore with the process-wide HomeCache and
       FileService, all injected by the caller.

Read-through lookup (GET /homes/{id}):
    ┌───────────┐ hit  ┌──────────────┐
    │ cache.get │─────▶│ decode, done │
    └─────┬─────┘      └──────────────┘
          │ miss
    ┌─────▼──────────┐    ┌─────────────────────┐
    │ store.get_by_id│───▶│ cache.set(json, TTL)│
    └────────────────┘    └─────────────────────┘

Writes:
    store mutation → commit → (if invalidate_on_write) cache.delete per id.
    Invalidation runs only after the commit succeeded, so a concurrent
    read-miss can't repopulate the cache with the pre-commit row.
    With invalidate_on_write=False cached homes stay stale until TTL expiry.
    Stored images a write replaced or orphaned are removed after the commit;
    the targeted row is locked first so the files read belong to the home
    that was actually changed.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from app.exceptions import NotFoundError, ValidationError
from app.models.home import IMAGE_FIELDS
from app.schemas.home import HomeCreate, HomePage, HomeResponse, HomeUpdate
from app.services.cache_service import HomeCache
from app.services.file_service import FileService, UploadedFile
from app.services.home_store import HomeStore, MatchPolicy
from app.services.image_paths import revise_image_paths, storage_path_of
from app.services.pagination import offset_for, paginate

logger = logging.getLogger(__name__)


class HomeService:
    """
    Business logic layer for homes.

    Args:
        store:              HomeStore bound to the request's session
        cache:              shared HomeCache
        file_service:       removes staged uploads when a write fails and
                            stored images a committed write left unreferenced
        match_policy:       how street matches resolve (see HomeStore)
        invalidate_on_write: delete cache entries after update/delete
        ttl_seconds:        cache expiry for populated entries
    """

    def __init__(
        self,
        store: HomeStore,
        cache: HomeCache,
        file_service: Optional[FileService] = None,
        match_policy: MatchPolicy = MatchPolicy.FIRST,
        invalidate_on_write: bool = True,
        ttl_seconds: Optional[int] = None,
    ):
        self.store = store
        self.cache = cache
        self.file_service = file_service
        self.match_policy = match_policy
        self.invalidate_on_write = invalidate_on_write
        self.ttl_seconds = ttl_seconds

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_home(self, home_id: uuid.UUID) -> HomeResponse:
        """
        Cache-aside lookup by id.

        Raises:
            NotFoundError: not cached and not in the store
        """
        key = self.cache.key_for(home_id)
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                return HomeResponse.from_cache(cached)
            except PydanticValidationError:
                # Entry written by an older schema; fall back to the store
                logger.warning("Discarding undecodable cache entry %s", key)

        home = await self.store.get_by_id(home_id)
        response = HomeResponse.model_validate(home)
        await self.cache.set(key, response.to_cache(), self.ttl_seconds)
        return response

    async def list_homes(self, page: int, limit: int) -> HomePage:
        """Page `page` of all homes in insertion order."""
        homes, total = await self.store.list_page(offset_for(page, limit), limit)
        window = paginate(page, limit, total)
        return HomePage(
            results=[HomeResponse.model_validate(home) for home in homes],
            previous=window.previous,
            next=window.next,
            total=total,
        )

    async def search_homes(self, term: str) -> List[HomeResponse]:
        """
        Ranked search. An empty list is the "no results" signal; it is not an
        error and is distinct from an UpstreamUnavailableError.
        """
        homes = await self.store.search(term)
        return [HomeResponse.model_validate(home) for home in homes]

    # ── Writes ────────────────────────────────────────────────────────────

    async def create_home(
        self,
        form: HomeCreate,
        uploads: Mapping[str, UploadedFile],
        base_url: str,
    ) -> HomeResponse:
        """
        Create a listing from its text fields and four uploaded images.

        Raises:
            ValidationError: one or more of the four image parts is missing
        """
        missing = [field for field in IMAGE_FIELDS if field not in uploads]
        if missing:
            await self._discard(uploads)
            raise ValidationError(
                message=f"Missing required images: {', '.join(missing)}",
                field=missing[0],
                context={"missing": missing},
            )

        fields = revise_image_paths(uploads, base_url, form.model_dump())
        try:
            home = await self.store.create(fields)
            await self.store.commit()
        except Exception:
            await self._discard(uploads)
            raise

        return HomeResponse.model_validate(home)

    async def update_home(
        self,
        street_query: str,
        patch: HomeUpdate,
        uploads: Mapping[str, UploadedFile],
        base_url: str,
    ) -> int:
        """
        Merge `patch` (plus any new images) into the home on `street_query`.

        Returns the number of homes changed; 0 when no street matched.
        Files behind the images this replaced are removed after the commit.
        """
        fields = revise_image_paths(uploads, base_url, patch.to_patch())
        match = {"street": street_query}
        try:
            replaced = await self._images_before(
                match, [field for field in IMAGE_FIELDS if field in fields], fields
            )
            changed = await self.store.update_by_match(match, fields, self.match_policy)
            await self.store.commit()
        except Exception:
            await self._discard(uploads)
            raise

        if not changed:
            # Nothing references the new files
            await self._discard(uploads)
        await self._invalidate(changed)
        await self._remove_images(replaced, changed)
        return len(changed)

    async def delete_home(self, street_query: str) -> int:
        """Delete the home on `street_query` and its stored images. Returns 0 or 1."""
        match = {"street": street_query}
        images = await self._images_before(match, IMAGE_FIELDS)
        removed = await self.store.delete_by_match(match, self.match_policy)
        await self.store.commit()
        await self._invalidate(removed)
        await self._remove_images(images, removed)
        return len(removed)

    async def delete_home_by_id(self, home_id: uuid.UUID) -> None:
        """
        Raises:
            NotFoundError: no home has this id
        """
        images = await self._images_before({"id": home_id}, IMAGE_FIELDS)
        if not await self.store.delete_by_id(home_id):
            raise NotFoundError(resource="home", resource_id=str(home_id))
        await self.store.commit()
        await self._invalidate([home_id])
        await self._remove_images(images, [home_id])

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _invalidate(self, home_ids: List[uuid.UUID]) -> None:
        if not self.invalidate_on_write:
            return
        for home_id in home_ids:
            await self.cache.delete(self.cache.key_for(home_id))

    async def _discard(self, uploads: Mapping[str, UploadedFile]) -> None:
        if self.file_service is not None and uploads:
            await self.file_service.discard(uploads)

    async def _images_before(
        self,
        match: Mapping[str, Any],
        fields: Sequence[str],
        incoming: Optional[Mapping[str, Any]] = None,
    ) -> Dict[uuid.UUID, List[str]]:
        """
        Image URLs the targeted home holds now, for the given fields.

        Locks the row, so the mutation that follows in this transaction hits
        the home whose images were read. URLs equal to an incoming value stay
        referenced and are left out.
        """
        if self.file_service is None or not fields:
            return {}
        home = await self.store.lock_match(match, self.match_policy)
        if home is None:
            return {}
        incoming = incoming or {}
        urls = [
            getattr(home, field) for field in fields
            if getattr(home, field) != incoming.get(field)
        ]
        return {home.id: urls}

    async def _remove_images(
        self,
        images: Mapping[uuid.UUID, List[str]],
        home_ids: List[uuid.UUID],
    ) -> None:
        """Delete the stored files behind `images` for homes actually mutated."""
        if self.file_service is None:
            return
        paths = [
            path
            for home_id in home_ids
            for path in map(storage_path_of, images.get(home_id, []))
            if path is not None
        ]
        if paths:
            await self.file_service.discard_paths(paths)
