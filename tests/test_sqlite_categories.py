"""Tests for sidebar categories and category block assignments."""

import pytest
from conftest import TEAM_ID, USER_ID

from board_storage.exceptions import DuplicateError, NotFoundError, ValidationError
from board_storage.model import Category


def make_category(category_id="cat-1", name="Favorites", **kwargs):
    return Category(
        id=category_id,
        name=name,
        user_id=kwargs.pop("user_id", USER_ID),
        team_id=kwargs.pop("team_id", TEAM_ID),
        **kwargs,
    )


class TestCategories:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store, clock):
        await store.create_category(make_category())

        category = await store.get_category("cat-1")
        assert category.name == "Favorites"
        assert category.create_at == clock.now
        assert category.delete_at == 0
        assert category.collapsed is False

    @pytest.mark.asyncio
    async def test_invalid_category(self, store):
        with pytest.raises(ValidationError):
            await store.create_category(make_category(name=""))

    @pytest.mark.asyncio
    async def test_duplicate_category(self, store):
        await store.create_category(make_category())
        with pytest.raises(DuplicateError):
            await store.create_category(make_category(name="Other"))

    @pytest.mark.asyncio
    async def test_missing_category(self, store):
        with pytest.raises(NotFoundError):
            await store.get_category("nope")

    @pytest.mark.asyncio
    async def test_update_category(self, store, clock):
        category = make_category()
        await store.create_category(category)
        clock.advance()

        category.name = "Starred"
        category.collapsed = True
        await store.update_category(category)

        fetched = await store.get_category("cat-1")
        assert fetched.name == "Starred"
        assert fetched.collapsed is True
        assert fetched.update_at == clock.now
        assert fetched.create_at == clock.now - 1000

    @pytest.mark.asyncio
    async def test_update_scoped_to_owner(self, store):
        await store.create_category(make_category(name="Mine"))

        with pytest.raises(NotFoundError):
            await store.update_category(
                make_category(name="Renamed", user_id="someone-else", team_id="team-9")
            )
        with pytest.raises(NotFoundError):
            await store.update_category(make_category(name="Renamed", team_id="team-9"))

        fetched = await store.get_category("cat-1")
        assert fetched.name == "Mine"
        assert fetched.user_id == USER_ID

    @pytest.mark.asyncio
    async def test_update_leaves_caller_object_unstamped(self, store):
        category = make_category()
        await store.create_category(category)

        category.name = "Starred"
        await store.update_category(category)

        assert category.create_at == 0
        assert category.update_at == 0

    @pytest.mark.asyncio
    async def test_update_missing_category(self, store):
        with pytest.raises(NotFoundError):
            await store.update_category(make_category())

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, store, clock):
        await store.create_category(make_category())
        clock.advance()

        await store.delete_category("cat-1", USER_ID, TEAM_ID)

        deleted = await store.get_category("cat-1")
        assert deleted.delete_at == clock.now
        assert await store.get_user_category_blocks(USER_ID, TEAM_ID) == []

    @pytest.mark.asyncio
    async def test_delete_requires_owner(self, store):
        await store.create_category(make_category())

        await store.delete_category("cat-1", "someone-else", TEAM_ID)

        assert (await store.get_category("cat-1")).delete_at == 0

    @pytest.mark.asyncio
    async def test_cannot_update_deleted_category(self, store):
        category = make_category()
        await store.create_category(category)
        await store.delete_category("cat-1", USER_ID, TEAM_ID)

        category.name = "Revived"
        with pytest.raises(NotFoundError):
            await store.update_category(category)


class TestCategoryBlocks:
    @pytest.mark.asyncio
    async def test_blocks_grouped_by_category(self, store, clock):
        await store.create_category(make_category("cat-1", "Work"))
        await store.create_category(make_category("cat-2", "Home"))
        await store.create_category(make_category("cat-3", "Elsewhere", team_id="team-2"))

        await store.add_update_category_block(USER_ID, "cat-1", "board-a")
        clock.advance()
        await store.add_update_category_block(USER_ID, "cat-1", "board-b")
        await store.add_update_category_block(USER_ID, "cat-2", "board-c")

        result = await store.get_user_category_blocks(USER_ID, TEAM_ID)

        assert [(entry.category.name, entry.block_ids) for entry in result] == [
            ("Home", ["board-c"]),
            ("Work", ["board-a", "board-b"]),
        ]

    @pytest.mark.asyncio
    async def test_moving_block_between_categories(self, store):
        await store.create_category(make_category("cat-1", "Work"))
        await store.create_category(make_category("cat-2", "Home"))

        await store.add_update_category_block(USER_ID, "cat-1", "board-a")
        await store.add_update_category_block(USER_ID, "cat-2", "board-a")

        result = {
            entry.category.id: entry.block_ids
            for entry in await store.get_user_category_blocks(USER_ID, TEAM_ID)
        }
        assert result == {"cat-1": [], "cat-2": ["board-a"]}

    @pytest.mark.asyncio
    async def test_add_to_unknown_category(self, store):
        with pytest.raises(NotFoundError):
            await store.add_update_category_block(USER_ID, "missing", "board-a")

    @pytest.mark.asyncio
    async def test_add_to_someone_elses_category(self, store):
        await store.create_category(make_category(user_id="owner"))
        with pytest.raises(NotFoundError):
            await store.add_update_category_block(USER_ID, "cat-1", "board-a")

    @pytest.mark.asyncio
    async def test_category_without_blocks(self, store):
        await store.create_category(make_category())

        (entry,) = await store.get_user_category_blocks(USER_ID, TEAM_ID)
        assert entry.category.id == "cat-1"
        assert entry.block_ids == []
