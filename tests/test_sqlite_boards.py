"""
Tests for board, membership and combined boards-and-blocks operations.

Uses real SQLite (in-memory) for accurate testing.
"""

import pytest
from conftest import TEAM_ID, USER_ID, make_block, make_board, make_user

from board_storage.exceptions import (
    InvalidBlockError,
    InvalidBoardsAndBlocksError,
    NotFoundError,
    ValidationError,
)
from board_storage.model import (
    Block,
    BlockPatch,
    BoardMember,
    BoardPatch,
    BoardsAndBlocks,
    DeleteBoardsAndBlocks,
    PatchBoardsAndBlocks,
    Team,
)


class TestBoardCrud:
    """Tests for single-board operations."""

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        board = make_board(description="Q3 plan", properties={"color": "red"})
        stored = await store.insert_board(board, USER_ID)

        fetched = await store.get_board("board-1")

        assert fetched == stored
        assert fetched.id == "board-1"
        assert fetched.properties == {"color": "red"}
        assert fetched.created_by == USER_ID

    @pytest.mark.asyncio
    async def test_get_missing_board(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.get_board("missing")
        assert store.is_err_not_found(exc_info.value)

    @pytest.mark.asyncio
    async def test_board_requires_team(self, store):
        with pytest.raises(ValidationError):
            await store.insert_board(make_board(team_id=""), USER_ID)

    @pytest.mark.asyncio
    async def test_insert_board_with_admin(self, store):
        board, member = await store.insert_board_with_admin(make_board(), USER_ID)

        assert board.id == "board-1"
        assert member == BoardMember.admin("board-1", USER_ID)
        assert await store.get_member_for_board("board-1", USER_ID) == member

    @pytest.mark.asyncio
    async def test_patch_board(self, store, clock):
        await store.insert_board(make_board(title="Old"), "creator")
        clock.advance()

        patched = await store.patch_board(
            "board-1", BoardPatch(title="New", updated_properties={"k": 1}), "editor"
        )

        assert patched.title == "New"
        assert patched.properties == {"k": 1}
        assert patched.created_by == "creator"
        assert patched.modified_by == "editor"
        assert patched.update_at == clock.now
        assert await store.get_board("board-1") == patched

    @pytest.mark.asyncio
    async def test_patch_missing_board(self, store):
        with pytest.raises(NotFoundError):
            await store.patch_board("missing", BoardPatch(title="x"), USER_ID)

    @pytest.mark.asyncio
    async def test_delete_board_removes_blocks_and_members(self, store):
        await store.insert_board_with_admin(make_board(), USER_ID)
        await store.insert_block(make_block("b1"), USER_ID)

        await store.delete_board("board-1", USER_ID)

        with pytest.raises(NotFoundError):
            await store.get_board("board-1")
        with pytest.raises(NotFoundError):
            await store.get_block("b1")
        assert await store.get_members_for_board("board-1") == []

    @pytest.mark.asyncio
    async def test_delete_missing_board_is_noop(self, store):
        await store.delete_board("missing", USER_ID)


class TestMembers:
    @pytest.mark.asyncio
    async def test_save_member_upserts(self, store):
        await store.save_member(BoardMember(board_id="board-1", user_id="u2", scheme_viewer=True))
        updated = await store.save_member(
            BoardMember(board_id="board-1", user_id="u2", scheme_editor=True, roles="editor")
        )

        assert updated.scheme_editor is True
        assert updated.scheme_viewer is False
        assert updated.roles == "editor"
        assert len(await store.get_members_for_board("board-1")) == 1

    @pytest.mark.asyncio
    async def test_delete_member(self, store):
        await store.save_member(BoardMember(board_id="board-1", user_id="u2"))
        await store.delete_member("board-1", "u2")

        with pytest.raises(NotFoundError):
            await store.get_member_for_board("board-1", "u2")

    @pytest.mark.asyncio
    async def test_members_for_board(self, store):
        for user_id in ("u3", "u1", "u2"):
            await store.save_member(BoardMember(board_id="board-1", user_id=user_id))
        await store.save_member(BoardMember(board_id="board-2", user_id="u1"))

        members = await store.get_members_for_board("board-1")
        assert [m.user_id for m in members] == ["u1", "u2", "u3"]


class TestBoardListing:
    @pytest.fixture
    async def listing_store(self, store):
        await store.insert_board_with_admin(make_board("b-alpha", title="Alpha plan"), USER_ID)
        await store.insert_board_with_admin(make_board("b-beta", title="Beta tasks"), USER_ID)
        await store.insert_board_with_admin(
            make_board("b-other-team", team_id="team-2", title="Alpha elsewhere"), USER_ID
        )
        await store.insert_board_with_admin(make_board("b-not-mine", title="Alpha"), "someone")
        await store.insert_board_with_admin(
            make_board("b-template", title="Alpha template", is_template=True), USER_ID
        )
        return store

    @pytest.mark.asyncio
    async def test_boards_for_user_and_team(self, listing_store):
        boards = await listing_store.get_boards_for_user_and_team(USER_ID, TEAM_ID)
        assert [b.id for b in boards] == ["b-alpha", "b-beta"]

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, listing_store):
        boards = await listing_store.search_boards_for_user_and_team("ALPHA", USER_ID, TEAM_ID)
        assert [b.id for b in boards] == ["b-alpha"]

    @pytest.mark.asyncio
    async def test_search_no_match(self, listing_store):
        assert await listing_store.search_boards_for_user_and_team("zzz", USER_ID, TEAM_ID) == []

    @pytest.mark.asyncio
    async def test_template_boards(self, listing_store):
        templates = await listing_store.get_template_boards(TEAM_ID)
        assert [b.id for b in templates] == ["b-template"]


class TestTemplates:
    @pytest.mark.asyncio
    async def test_remove_default_templates(self, store):
        template = await store.insert_board(
            make_board("tpl", team_id="0", is_template=True), "system"
        )
        await store.insert_block(make_block("tpl-card", board_id="tpl", block_type="card"), "system")

        await store.remove_default_templates([template])

        assert await store.get_template_boards("0") == []
        with pytest.raises(NotFoundError):
            await store.get_block("tpl-card")

    @pytest.mark.asyncio
    async def test_remove_rejects_regular_board(self, store):
        template = await store.insert_board(make_board("tpl", is_template=True), USER_ID)
        regular = await store.insert_board(make_board("regular"), USER_ID)

        with pytest.raises(ValidationError):
            await store.remove_default_templates([template, regular])

        assert (await store.get_board("tpl")).is_template


class TestBoardAndCard:
    @pytest.fixture
    async def card_store(self, store):
        await store.insert_board(make_board(), USER_ID)
        await store.insert_blocks(
            [
                make_block("card-1", block_type="card", parent_id="board-1", root_id="card-1"),
                make_block("text-1", parent_id="card-1", root_id="card-1"),
                make_block("check-1", block_type="checkbox", parent_id="text-1", root_id="card-1"),
                make_block("orphan", parent_id="board-1"),
            ],
            USER_ID,
        )
        return store

    @pytest.mark.asyncio
    async def test_card_itself(self, card_store):
        board, card = await card_store.get_board_and_card_by_id("card-1")
        assert board.id == "board-1"
        assert card.id == "card-1"

    @pytest.mark.asyncio
    async def test_nearest_card_ancestor(self, card_store):
        board, card = await card_store.get_board_and_card_by_id("check-1")
        assert board.id == "board-1"
        assert card.id == "card-1"

    @pytest.mark.asyncio
    async def test_no_card_ancestor(self, card_store):
        with pytest.raises(NotFoundError) as exc_info:
            await card_store.get_board_and_card_by_id("orphan")
        assert exc_info.value.resource == "card"

    @pytest.mark.asyncio
    async def test_missing_block(self, card_store):
        with pytest.raises(NotFoundError):
            await card_store.get_board_and_card_by_id("missing")

    @pytest.mark.asyncio
    async def test_unsaved_block(self, card_store):
        draft = Block(id="draft", board_id="board-1", type="comment", parent_id="card-1")
        board, card = await card_store.get_board_and_card(draft)
        assert (board.id, card.id) == ("board-1", "card-1")

    @pytest.mark.asyncio
    async def test_card_without_board(self, store):
        card = Block(id="c", board_id="nowhere", type="card")
        with pytest.raises(NotFoundError) as exc_info:
            await store.get_board_and_card(card)
        assert exc_info.value.resource == "board"


class TestDuplicateBoard:
    @pytest.mark.asyncio
    async def test_duplicate_as_template(self, store):
        await store.insert_board(make_board(title="Source"), "owner")
        await store.insert_blocks(
            [
                make_block("card-1", block_type="card", parent_id="board-1", root_id="card-1"),
                make_block("text-1", parent_id="card-1", root_id="card-1"),
            ],
            "owner",
        )

        bab, members = await store.duplicate_board("board-1", "copier", True)

        (new_board,) = bab.boards
        assert new_board.id != "board-1"
        assert new_board.id.startswith("b")
        assert new_board.title == "Source"
        assert new_board.is_template is True
        assert new_board.created_by == "copier"
        assert members == [BoardMember.admin(new_board.id, "copier")]

        by_type = {b.type: b for b in bab.blocks}
        new_card, new_text = by_type["card"], by_type["text"]
        assert new_card.id not in ("card-1", "text-1")
        assert new_card.board_id == new_board.id
        assert new_card.parent_id == new_board.id
        assert new_text.parent_id == new_card.id
        assert new_text.root_id == new_card.id

        # source untouched
        assert not (await store.get_board("board-1")).is_template
        assert len(await store.get_blocks_for_board("board-1")) == 2
        assert len(await store.get_blocks_for_board(new_board.id)) == 2

    @pytest.mark.asyncio
    async def test_duplicate_missing_board(self, store):
        with pytest.raises(NotFoundError):
            await store.duplicate_board("missing", USER_ID, False)


class TestCombinedBatches:
    @pytest.mark.asyncio
    async def test_create_boards_and_blocks(self, store):
        bab = BoardsAndBlocks(
            boards=[make_board("b1"), make_board("b2")],
            blocks=[make_block("x", board_id="b1"), make_block("y", board_id="b2")],
        )

        created = await store.create_boards_and_blocks(bab, USER_ID)

        assert [b.id for b in created.boards] == ["b1", "b2"]
        assert [b.id for b in created.blocks] == ["x", "y"]
        assert (await store.get_block("y")).board_id == "b2"
        assert await store.get_members_for_board("b1") == []

    @pytest.mark.asyncio
    async def test_create_with_admin(self, store):
        bab = BoardsAndBlocks(boards=[make_board("b1"), make_board("b2")])

        _, members = await store.create_boards_and_blocks_with_admin(bab, USER_ID)

        assert {m.board_id for m in members} == {"b1", "b2"}
        assert all(m.scheme_admin for m in members)

    @pytest.mark.asyncio
    async def test_create_rejects_foreign_block(self, store):
        bab = BoardsAndBlocks(
            boards=[make_board("b1")],
            blocks=[make_block("x", board_id="elsewhere")],
        )
        with pytest.raises(InvalidBoardsAndBlocksError):
            await store.create_boards_and_blocks(bab, USER_ID)

        with pytest.raises(NotFoundError):
            await store.get_board("b1")

    @pytest.mark.asyncio
    async def test_create_invalid_parent_persists_nothing(self, store):
        bab = BoardsAndBlocks(
            boards=[make_board("b1")],
            blocks=[make_block("x", board_id="b1"), make_block("y", board_id="b1", parent_id="no")],
        )

        with pytest.raises(InvalidBlockError):
            await store.create_boards_and_blocks(bab, USER_ID)

        with pytest.raises(NotFoundError):
            await store.get_board("b1")
        with pytest.raises(NotFoundError):
            await store.get_block("x")

    @pytest.mark.asyncio
    async def test_rolled_back_create_leaves_caller_objects_unstamped(self, store):
        board = make_board("b1")
        bab = BoardsAndBlocks(
            boards=[board],
            blocks=[make_block("x", board_id="b1", parent_id="no")],
        )

        with pytest.raises(InvalidBlockError):
            await store.create_boards_and_blocks(bab, USER_ID)

        assert board.create_at == 0
        assert board.update_at == 0
        assert board.created_by == ""
        assert board.modified_by == ""

    @pytest.mark.asyncio
    async def test_patch_boards_and_blocks(self, store):
        await store.create_boards_and_blocks(
            BoardsAndBlocks(boards=[make_board("b1")], blocks=[make_block("x", board_id="b1")]),
            USER_ID,
        )

        result = await store.patch_boards_and_blocks(
            PatchBoardsAndBlocks(
                board_ids=["b1"],
                board_patches=[BoardPatch(title="Renamed")],
                block_ids=["x"],
                block_patches=[BlockPatch(title="Patched")],
            ),
            "editor",
        )

        assert result.boards[0].title == "Renamed"
        assert result.blocks[0].title == "Patched"
        assert result.blocks[0].modified_by == "editor"

    @pytest.mark.asyncio
    async def test_patch_rejects_block_from_other_board(self, store):
        await store.create_boards_and_blocks(
            BoardsAndBlocks(
                boards=[make_board("b1"), make_board("b2")],
                blocks=[make_block("x", board_id="b2")],
            ),
            USER_ID,
        )

        with pytest.raises(InvalidBoardsAndBlocksError):
            await store.patch_boards_and_blocks(
                PatchBoardsAndBlocks(
                    board_ids=["b1"],
                    board_patches=[BoardPatch(title="Renamed")],
                    block_ids=["x"],
                    block_patches=[BlockPatch(title="Patched")],
                ),
                USER_ID,
            )

        assert (await store.get_board("b1")).title == "Roadmap"
        assert (await store.get_block("x")).title == ""

    @pytest.mark.asyncio
    async def test_delete_boards_and_blocks(self, store):
        await store.create_boards_and_blocks(
            BoardsAndBlocks(
                boards=[make_board("b1"), make_board("b2")],
                blocks=[make_block("x", board_id="b1"), make_block("y", board_id="b2")],
            ),
            USER_ID,
        )

        await store.delete_boards_and_blocks(
            DeleteBoardsAndBlocks(boards=["b1"], blocks=["x"]), USER_ID
        )

        with pytest.raises(NotFoundError):
            await store.get_board("b1")
        with pytest.raises(NotFoundError):
            await store.get_block("x")
        assert (await store.get_block("y")).board_id == "b2"

    @pytest.mark.asyncio
    async def test_delete_rejects_block_from_unlisted_board(self, store):
        await store.create_boards_and_blocks(
            BoardsAndBlocks(
                boards=[make_board("b1"), make_board("b2")],
                blocks=[make_block("x", board_id="b1"), make_block("y", board_id="b2")],
            ),
            USER_ID,
        )

        with pytest.raises(InvalidBoardsAndBlocksError):
            await store.delete_boards_and_blocks(
                DeleteBoardsAndBlocks(boards=["b1"], blocks=["x", "y"]), USER_ID
            )

        assert (await store.get_board("b1")).id == "b1"
        assert (await store.get_block("x")).id == "x"
        assert (await store.get_block("y")).id == "y"


class TestTeamUserBoardCardScenario:
    @pytest.mark.asyncio
    async def test_end_to_end(self, store):
        await store.upsert_team_settings(Team(id="T", title="Team T"))
        await store.create_user(make_user("U", team_id="T"))
        board, _ = await store.insert_board_with_admin(make_board("B", team_id="T"), "U")
        card = Block(id="C", board_id="B", type="card", parent_id="", root_id="C")
        await store.insert_block(card, "U")

        found_board, found_card = await store.get_board_and_card(card)
        assert found_board.id == board.id
        assert found_card.id == "C"

        await store.delete_board("B", "U")
        with pytest.raises(NotFoundError) as exc_info:
            await store.get_board("B")
        assert store.is_err_not_found(exc_info.value)
