"""
Billow Backend — Home Store Tests
==================================

What:  Tests for HomeStore against a real (SQLite) database.
How:   Rows are inserted with explicit created_at values so "first match"
       is deterministic. Full-text search is PostgreSQL-only; it is checked
       by compiling the statement for the PostgreSQL dialect and by a mocked
       session.

Test Strategy:
    ✅ create assigns an id and round-trips every field
    ✅ missing/unknown fields rejected before any SQL
    ✅ update/delete by street: first match only, no-match no-op
    ✅ REQUIRE_UNIQUE: ambiguous matches raise and change nothing
    ✅ paging windows and totals
    ✅ driver failures translated to UpstreamUnavailable/Database errors
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from app.exceptions import (
    AmbiguousMatchError,
    DatabaseError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.services.home_store import HomeStore, MatchPolicy


class TestHomeStoreCreate:

    @pytest.mark.asyncio
    async def test_create_then_get_returns_fields(self, db_session, listing_fields):
        store = HomeStore(db_session)
        home = await store.create(listing_fields)
        await store.commit()

        assert home.id is not None
        fetched = await store.get_by_id(home.id)
        for name, value in listing_fields.items():
            assert getattr(fetched, name) == value

    @pytest.mark.asyncio
    async def test_create_assigns_distinct_ids(self, db_session, listing_fields):
        store = HomeStore(db_session)
        first = await store.create(listing_fields)
        second = await store.create(listing_fields)
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_create_missing_field_rejected(self, mock_db_session, listing_fields):
        del listing_fields["city"]
        store = HomeStore(mock_db_session)

        with pytest.raises(ValidationError, match="Missing required fields: city"):
            await store.create(listing_fields)
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_unknown_field_rejected(self, mock_db_session, listing_fields):
        store = HomeStore(mock_db_session)
        with pytest.raises(ValidationError, match="Unknown listing fields: owner"):
            await store.create({**listing_fields, "owner": "x"})

    @pytest.mark.asyncio
    async def test_get_unknown_id_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await HomeStore(db_session).get_by_id(uuid4())


class TestHomeStoreMatchMutations:
    """Update/delete addressed by street."""

    @pytest.mark.asyncio
    async def test_delete_by_street_removes_only_that_home(self, db_session, insert_home):
        elm = await insert_home(street="12 Elm St", minutes=0)
        oak = await insert_home(street="4 Oak Ave", minutes=1)
        store = HomeStore(db_session)

        removed = await store.delete_by_match({"street": "12 Elm St"})
        await store.commit()

        assert removed == [elm.id]
        with pytest.raises(NotFoundError):
            await store.get_by_id(elm.id)
        assert (await store.get_by_id(oak.id)).street == "4 Oak Ave"
        _, total = await store.list_page(offset=0, limit=10)
        assert total == 1

        assert await store.delete_by_match({"street": "12 Elm St"}) == []
        _, total = await store.list_page(offset=0, limit=10)
        assert total == 1

    @pytest.mark.asyncio
    async def test_update_no_match_is_noop(self, db_session, insert_home):
        home = await insert_home(street="12 Elm St")
        store = HomeStore(db_session)

        changed = await store.update_by_match({"street": "99 Nowhere Rd"}, {"price": 1.0})
        await store.commit()

        assert changed == []
        assert (await store.get_by_id(home.id)).price == home.price

    @pytest.mark.asyncio
    async def test_update_changes_only_patched_fields(self, db_session, insert_home):
        home = await insert_home(street="12 Elm St")
        store = HomeStore(db_session)

        changed = await store.update_by_match(
            {"street": "12 Elm St"}, {"price": 410000.0, "bedrooms": 4}
        )
        await store.commit()

        assert changed == [home.id]
        fetched = await store.get_by_id(home.id)
        assert fetched.price == 410000.0
        assert fetched.bedrooms == 4
        assert fetched.city == home.city
        assert fetched.house_img_main == home.house_img_main

    @pytest.mark.asyncio
    async def test_first_policy_updates_oldest_match(self, db_session, insert_home):
        older = await insert_home(street="7 Twin Ln", minutes=0)
        newer = await insert_home(street="7 Twin Ln", minutes=5)
        store = HomeStore(db_session)

        changed = await store.update_by_match(
            {"street": "7 Twin Ln"}, {"price": 1.0}, MatchPolicy.FIRST
        )
        await store.commit()

        assert changed == [older.id]
        assert (await store.get_by_id(older.id)).price == 1.0
        assert (await store.get_by_id(newer.id)).price == newer.price

    @pytest.mark.asyncio
    async def test_first_policy_deletes_one_of_many(self, db_session, insert_home):
        older = await insert_home(street="7 Twin Ln", minutes=0)
        newer = await insert_home(street="7 Twin Ln", minutes=5)
        store = HomeStore(db_session)

        removed = await store.delete_by_match({"street": "7 Twin Ln"})
        await store.commit()

        assert removed == [older.id]
        assert await store.count_matches({"street": "7 Twin Ln"}) == 1
        assert (await store.get_by_id(newer.id)).id == newer.id

    @pytest.mark.asyncio
    async def test_unique_policy_rejects_ambiguous_update(self, db_session, insert_home):
        first = await insert_home(street="7 Twin Ln", minutes=0)
        await insert_home(street="7 Twin Ln", minutes=5)
        store = HomeStore(db_session)

        with pytest.raises(AmbiguousMatchError) as exc_info:
            await store.update_by_match(
                {"street": "7 Twin Ln"}, {"price": 1.0}, MatchPolicy.REQUIRE_UNIQUE
            )
        assert exc_info.value.match_count == 2
        assert (await store.get_by_id(first.id)).price == first.price

    @pytest.mark.asyncio
    async def test_unique_policy_rejects_ambiguous_delete(self, db_session, insert_home):
        await insert_home(street="7 Twin Ln", minutes=0)
        await insert_home(street="7 Twin Ln", minutes=5)
        store = HomeStore(db_session)

        with pytest.raises(AmbiguousMatchError):
            await store.delete_by_match({"street": "7 Twin Ln"}, MatchPolicy.REQUIRE_UNIQUE)
        assert await store.count_matches({"street": "7 Twin Ln"}) == 2

    @pytest.mark.asyncio
    async def test_unique_policy_single_match_succeeds(self, db_session, insert_home):
        home = await insert_home(street="12 Elm St")
        store = HomeStore(db_session)

        removed = await store.delete_by_match({"street": "12 Elm St"}, MatchPolicy.REQUIRE_UNIQUE)
        assert removed == [home.id]

    @pytest.mark.asyncio
    async def test_unique_policy_no_match_is_noop(self, db_session):
        store = HomeStore(db_session)
        assert await store.delete_by_match({"street": "none"}, MatchPolicy.REQUIRE_UNIQUE) == []

    @pytest.mark.asyncio
    async def test_empty_patch_rejected(self, mock_db_session):
        with pytest.raises(ValidationError, match="No updatable fields"):
            await HomeStore(mock_db_session).update_by_match({"street": "x"}, {})
        mock_db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_patch_cannot_touch_id(self, mock_db_session):
        with pytest.raises(ValidationError, match="cannot be updated: id"):
            await HomeStore(mock_db_session).update_by_match({"street": "x"}, {"id": uuid4()})

    @pytest.mark.asyncio
    async def test_empty_match_rejected(self, mock_db_session):
        with pytest.raises(ValidationError, match="match filter is required"):
            await HomeStore(mock_db_session).delete_by_match({})

    @pytest.mark.asyncio
    async def test_delete_by_id(self, db_session, insert_home):
        home = await insert_home()
        store = HomeStore(db_session)

        assert await store.delete_by_id(home.id) is True
        assert await store.delete_by_id(home.id) is False


class TestHomeStorePaging:

    @pytest.mark.asyncio
    async def test_list_page_in_insertion_order(self, db_session, insert_home):
        homes = [await insert_home(street=f"{n} Main St", minutes=n) for n in range(5)]
        store = HomeStore(db_session)

        page, total = await store.list_page(offset=2, limit=2)

        assert total == 5
        assert [h.id for h in page] == [homes[2].id, homes[3].id]

    @pytest.mark.asyncio
    async def test_list_page_past_end_is_empty(self, db_session, insert_home):
        await insert_home()
        page, total = await HomeStore(db_session).list_page(offset=10, limit=10)
        assert page == []
        assert total == 1


class TestHomeStoreSearch:

    @pytest.mark.asyncio
    async def test_empty_term_returns_empty_without_query(self, mock_db_session):
        assert await HomeStore(mock_db_session).search("") == []
        mock_db_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_search_ranks_by_relevance(self, mock_db_session):
        """The statement filters with @@ and orders by ts_rank descending."""
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        mock_db_session.execute.return_value = result

        assert await HomeStore(mock_db_session).search("backyard") == []

        stmt = mock_db_session.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "plainto_tsquery('english'" in sql
        assert "@@" in sql
        assert "ts_rank(" in sql
        assert "DESC" in sql
        # Same expression as the GIN index
        assert (
            "to_tsvector('english', homes.street || ' ' || homes.city || ' ' || "
            "homes.state || ' ' || homes.zip || ' ' || homes.description)"
        ) in sql


class TestHomeStoreErrors:

    @pytest.mark.asyncio
    async def test_connection_failure_is_upstream_unavailable(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, OSError("refused"))
        with pytest.raises(UpstreamUnavailableError):
            await HomeStore(mock_db_session).get_by_id(uuid4())

    @pytest.mark.asyncio
    async def test_other_failures_are_database_errors(self, mock_db_session):
        mock_db_session.execute.side_effect = IntegrityError("UPDATE", {}, Exception("boom"))
        with pytest.raises(DatabaseError):
            await HomeStore(mock_db_session).update_by_match({"street": "x"}, {"price": 1.0})
