"""
Billow Backend — Home Store
============================

What:  Persistence operations for listings: lookup, paging, ranked search,
       create, and match-based update/delete.
Why:   Keeps every SQL statement for the `homes` table in one place, behind
       a small contract the service layer can mock.
How:   One HomeStore per request, bound to that request's AsyncSession.
Who:   HomeService. The store never touches the cache.

Match-based mutation:
    Listings are addressed by street, which is not unique. Update and delete
    therefore run as ONE statement that picks the target row in a subquery:

        UPDATE homes SET ... WHERE id = (
            SELECT id FROM homes WHERE street = :street
            ORDER BY created_at, id LIMIT 1 FOR UPDATE
        ) RETURNING id

    The match and the mutation cannot interleave with another request.
    `MatchPolicy` makes the multiple-match case explicit:
        FIRST           mutate the oldest matching home
        REQUIRE_UNIQUE  mutate only when exactly one home matches, otherwise
                        raise AmbiguousMatchError and change nothing
    No match is a no-op returning an empty id list, never an error.

Error translation:
    Connection failures and timeouts → UpstreamUnavailableError (503)
    Any other SQLAlchemy failure     → DatabaseError (500)
"""

import enum
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, func, literal_column, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.exceptions import (
    AmbiguousMatchError,
    BillowError,
    DatabaseError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.models.home import LISTING_FIELDS, SEARCH_CONFIG, Home, search_document

logger = logging.getLogger(__name__)

# Columns usable in a match filter
MATCHABLE_FIELDS = frozenset(LISTING_FIELDS) | {"id"}


class MatchPolicy(str, enum.Enum):
    FIRST = "first"
    REQUIRE_UNIQUE = "unique"


class HomeStore:
    """
    Data access for the `homes` table.

    Every method flushes but none commits on its own; HomeService decides
    when the unit of work ends by calling `commit()`.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_by_id(self, home_id: uuid.UUID) -> Home:
        """
        Fetch one home by primary key.

        Raises:
            NotFoundError: no home has this id
        """
        try:
            result = await self.session.execute(
                select(Home)
                .where(Home.id == home_id)
                .execution_options(populate_existing=True)
            )
            home = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "get_by_id", home_id=str(home_id)) from e

        if home is None:
            raise NotFoundError(resource="home", resource_id=str(home_id))
        return home

    async def list_page(self, offset: int, limit: int) -> Tuple[List[Home], int]:
        """
        One window of homes in insertion order, plus the collection size.

        Query plan:
            SELECT * FROM homes ORDER BY created_at, id OFFSET :o LIMIT :l
            SELECT count(*) FROM homes
        An offset past the end simply returns no rows.
        """
        try:
            result = await self.session.execute(
                select(Home)
                .order_by(Home.created_at, Home.id)
                .offset(offset)
                .limit(limit)
            )
            homes = list(result.scalars().all())

            count_result = await self.session.execute(select(func.count()).select_from(Home))
            total = count_result.scalar() or 0
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "list_page", offset=offset, limit=limit) from e

        return homes, total

    async def search(self, term: str) -> List[Home]:
        """
        Relevance-ranked full-text search over street, city, state, zip and
        description (PostgreSQL `ts_rank`, highest score first).

        Returns an empty list when nothing matches, including for a term
        made only of stop words.
        """
        if not term:
            return []

        document = search_document()
        query = func.plainto_tsquery(literal_column(f"'{SEARCH_CONFIG}'"), term)
        rank = func.ts_rank(document, query)
        stmt = (
            select(Home)
            .where(document.op("@@")(query))
            .order_by(rank.desc(), Home.created_at, Home.id)
        )

        try:
            result = await self.session.execute(stmt)
            homes = list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "search", term=term) from e

        logger.info("Search '%s' matched %d homes", term, len(homes))
        return homes

    async def count_matches(self, match: Mapping[str, Any]) -> int:
        target = aliased(Home, name="matched")
        conditions = self._match_conditions(match, target)
        try:
            result = await self.session.execute(
                select(func.count()).select_from(target).where(*conditions)
            )
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "count_matches", match=dict(match)) from e
        return result.scalar() or 0

    async def lock_match(
        self,
        match: Mapping[str, Any],
        policy: MatchPolicy = MatchPolicy.FIRST,
    ) -> Optional[Home]:
        """
        Load and row-lock the home a match-based mutation would target.

        The lock holds until commit, so a following `update_by_match` or
        `delete_by_match` with the same arguments in this transaction hits
        the same row. None when nothing (or, under REQUIRE_UNIQUE, more than
        one home) matches.
        """
        target_id, only_one = self._target(match)
        stmt = select(Home).where(Home.id == target_id)
        if policy is MatchPolicy.REQUIRE_UNIQUE:
            stmt = stmt.where(only_one)
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "lock_match", match=dict(match)) from e
        return result.scalar_one_or_none()

    # ── Writes ────────────────────────────────────────────────────────────

    async def create(self, fields: Mapping[str, Any]) -> Home:
        """
        Insert a new home. The id is assigned by the store.

        Raises:
            ValidationError: a required field is missing/None, or an unknown
                             key was supplied. Raised before any SQL runs.
        """
        unknown = sorted(set(fields) - set(LISTING_FIELDS))
        if unknown:
            raise ValidationError(
                message=f"Unknown listing fields: {', '.join(unknown)}",
                context={"unknown": unknown},
            )
        missing = [name for name in LISTING_FIELDS if fields.get(name) is None]
        if missing:
            raise ValidationError(
                message=f"Missing required fields: {', '.join(missing)}",
                field=missing[0],
                context={"missing": missing},
            )

        home = Home(**{name: fields[name] for name in LISTING_FIELDS})
        try:
            self.session.add(home)
            await self.session.flush()
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "create", street=fields.get("street")) from e

        logger.info("Home created: %s (%s)", home.id, home.street)
        return home

    async def update_by_match(
        self,
        match: Mapping[str, Any],
        patch: Mapping[str, Any],
        policy: MatchPolicy = MatchPolicy.FIRST,
    ) -> List[uuid.UUID]:
        """
        Overwrite the fields in `patch` on the home selected by `match`.

        Fields absent from `patch` are untouched. Returns the ids changed:
        [] when nothing matched (a deliberate no-op), one id otherwise.

        Raises:
            ValidationError:     empty match/patch, unknown or null fields
            AmbiguousMatchError: REQUIRE_UNIQUE and several homes match
        """
        values = self._validate_patch(patch)
        target_id, only_one = self._target(match)

        stmt = update(Home).where(Home.id == target_id)
        if policy is MatchPolicy.REQUIRE_UNIQUE:
            stmt = stmt.where(only_one)
        stmt = (
            stmt.values(**values)
            .returning(Home.id)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            changed = list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "update_by_match", match=dict(match)) from e

        await self._check_ambiguity(changed, match, policy)
        logger.info("update_by_match %s changed %d home(s)", dict(match), len(changed))
        return changed

    async def delete_by_match(
        self,
        match: Mapping[str, Any],
        policy: MatchPolicy = MatchPolicy.FIRST,
    ) -> List[uuid.UUID]:
        """
        Remove the home selected by `match`. Same matching rules and return
        value as `update_by_match`.
        """
        target_id, only_one = self._target(match)

        stmt = delete(Home).where(Home.id == target_id)
        if policy is MatchPolicy.REQUIRE_UNIQUE:
            stmt = stmt.where(only_one)
        stmt = stmt.returning(Home.id).execution_options(synchronize_session=False)

        try:
            result = await self.session.execute(stmt)
            removed = list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "delete_by_match", match=dict(match)) from e

        await self._check_ambiguity(removed, match, policy)
        logger.info("delete_by_match %s removed %d home(s)", dict(match), len(removed))
        return removed

    async def delete_by_id(self, home_id: uuid.UUID) -> bool:
        """Remove one home by id. False when it did not exist."""
        stmt = (
            delete(Home)
            .where(Home.id == home_id)
            .returning(Home.id)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            removed = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise self._translate(e, "delete_by_id", home_id=str(home_id)) from e
        return removed is not None

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.session.rollback()
            raise self._translate(e, "commit") from e

    # ── Helpers ───────────────────────────────────────────────────────────

    def _target(self, match: Mapping[str, Any]):
        """
        Build the two subqueries used by match-based mutations:
            target_id  id of the first match in insertion order (row-locked)
            only_one   predicate "exactly one home matches"

        Both select from an alias so they are not correlated with the outer
        UPDATE/DELETE on the same table.
        """
        matched = aliased(Home, name="matched")
        conditions = self._match_conditions(match, matched)

        target_id = (
            select(matched.id)
            .where(*conditions)
            .order_by(matched.created_at, matched.id)
            .limit(1)
            .with_for_update()
            .scalar_subquery()
        )

        counted = aliased(Home, name="counted")
        count_conditions = self._match_conditions(match, counted)
        only_one = (
            select(func.count())
            .select_from(counted)
            .where(*count_conditions)
            .scalar_subquery()
            == 1
        )
        return target_id, only_one

    @staticmethod
    def _match_conditions(match: Mapping[str, Any], entity) -> Sequence:
        if not match:
            raise ValidationError(message="A match filter is required", field="match")
        unknown = sorted(set(match) - MATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(
                message=f"Cannot match on: {', '.join(unknown)}",
                context={"unknown": unknown},
            )
        return [getattr(entity, name) == value for name, value in match.items()]

    @staticmethod
    def _validate_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
        if not patch:
            raise ValidationError(message="No updatable fields supplied", field="patch")
        unknown = sorted(set(patch) - set(LISTING_FIELDS))
        if unknown:
            raise ValidationError(
                message=f"Fields cannot be updated: {', '.join(unknown)}",
                context={"unknown": unknown},
            )
        nulls = sorted(name for name, value in patch.items() if value is None)
        if nulls:
            raise ValidationError(
                message=f"Fields cannot be cleared: {', '.join(nulls)}",
                context={"null": nulls},
            )
        return dict(patch)

    async def _check_ambiguity(
        self,
        changed: List[uuid.UUID],
        match: Mapping[str, Any],
        policy: MatchPolicy,
    ) -> None:
        """Under REQUIRE_UNIQUE, tell "nothing matched" apart from "too many matched"."""
        if changed or policy is not MatchPolicy.REQUIRE_UNIQUE:
            return
        count = await self.count_matches(match)
        if count > 1:
            raise AmbiguousMatchError(match=dict(match), match_count=count)

    @staticmethod
    def _translate(error: Exception, operation: str, **context: Union[str, int, dict, None]) -> BillowError:
        """Map a driver/ORM failure onto the application hierarchy, logging details."""
        context = {"operation": operation, "error_type": type(error).__name__, **context}
        transient = isinstance(error, (OSError, OperationalError, InterfaceError)) or (
            isinstance(error, DBAPIError) and error.connection_invalidated
        )
        if transient:
            logger.error("Database unavailable during %s: %s", operation, str(error))
            return UpstreamUnavailableError(context=context)
        logger.error("Database error during %s: %s", operation, str(error), exc_info=True)
        return DatabaseError(context=context)
