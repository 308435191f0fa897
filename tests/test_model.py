"""Tests for the data model: patches, validation and serialization."""

import pytest

from board_storage.exceptions import (
    InvalidBlockError,
    InvalidBoardsAndBlocksError,
    InvalidNotificationHintError,
    ValidationError,
)
from board_storage.model import (
    Block,
    BlockPatch,
    BlockPatchBatch,
    Board,
    BoardMember,
    BoardPatch,
    BoardsAndBlocks,
    Category,
    DeleteBoardsAndBlocks,
    NotificationHint,
    PatchBoardsAndBlocks,
    Subscription,
    User,
)


class TestBlock:
    def test_is_valid_requires_board(self):
        with pytest.raises(InvalidBlockError) as exc_info:
            Block(id="b1", board_id="", type="text").is_valid()
        assert exc_info.value.field == "boardId"

    def test_is_valid_requires_id(self):
        with pytest.raises(InvalidBlockError):
            Block(id="", board_id="board-1", type="text").is_valid()

    def test_dict_uses_wire_names(self):
        block = Block(id="b1", board_id="board-1", type="card", parent_id="board-1", title="T")
        data = block.to_dict()
        assert data["boardId"] == "board-1"
        assert data["parentId"] == "board-1"
        assert Block.from_dict(data) == block


class TestBlockPatch:
    def test_patch_updates_and_deletes_fields(self):
        block = Block(
            id="b1", board_id="board-1", type="text", title="old", fields={"a": 1, "b": 2}
        )
        patch = BlockPatch(title="new", updated_fields={"c": 3}, deleted_fields=["a"])

        patched = patch.patch(block)

        assert patched.title == "new"
        assert patched.fields == {"b": 2, "c": 3}
        # original untouched
        assert block.title == "old"
        assert block.fields == {"a": 1, "b": 2}

    def test_empty_patch_changes_nothing(self):
        block = Block(id="b1", board_id="board-1", type="text", title="same", fields={"a": 1})
        assert BlockPatch().patch(block) == block

    def test_from_dict(self):
        patch = BlockPatch.from_dict({"title": "x", "updatedFields": {"k": "v"}})
        assert patch.title == "x"
        assert patch.parent_id is None
        assert patch.updated_fields == {"k": "v"}

    def test_batch_length_mismatch(self):
        with pytest.raises(InvalidBlockError):
            BlockPatchBatch(block_ids=["a", "b"], block_patches=[BlockPatch()]).is_valid()


class TestBoardPatch:
    def test_patch_scalar_fields(self):
        board = Board(id="board-1", team_id="t", title="old", description="d")
        patched = BoardPatch(title="new", show_description=True).patch(board)
        assert patched.title == "new"
        assert patched.description == "d"
        assert patched.show_description is True
        assert board.title == "old"

    def test_patch_properties(self):
        board = Board(id="board-1", team_id="t", properties={"a": 1, "b": 2})
        patched = BoardPatch(updated_properties={"c": 3}, deleted_properties=["a"]).patch(board)
        assert patched.properties == {"b": 2, "c": 3}

    def test_patch_card_properties(self):
        board = Board(
            id="board-1",
            team_id="t",
            card_properties=[
                {"id": "p1", "name": "Status"},
                {"id": "p2", "name": "Owner"},
                {"id": "p3", "name": "Due"},
            ],
        )
        patch = BoardPatch(
            updated_card_properties=[{"id": "p2", "name": "Assignee"}, {"id": "p4", "name": "New"}],
            deleted_card_properties=["p3"],
        )

        patched = patch.patch(board)

        assert patched.card_properties == [
            {"id": "p1", "name": "Status"},
            {"id": "p2", "name": "Assignee"},
            {"id": "p4", "name": "New"},
        ]

    def test_board_dict_round_trip(self):
        board = Board(id="board-1", team_id="t", is_template=True, properties={"x": 1})
        assert Board.from_dict(board.to_dict()) == board


class TestBoardMember:
    def test_admin_has_every_role(self):
        member = BoardMember.admin("board-1", "user-1")
        assert member.scheme_admin
        assert member.scheme_editor
        assert member.scheme_commenter
        assert member.scheme_viewer


class TestBatches:
    def test_boards_and_blocks_requires_board(self):
        with pytest.raises(InvalidBoardsAndBlocksError):
            BoardsAndBlocks().is_valid()

    def test_boards_and_blocks_block_must_belong(self):
        bab = BoardsAndBlocks(
            boards=[Board(id="board-1", team_id="t")],
            blocks=[Block(id="b1", board_id="board-2", type="text")],
        )
        with pytest.raises(InvalidBoardsAndBlocksError) as exc_info:
            bab.is_valid()
        assert exc_info.value.value == "b1"

    def test_patch_boards_and_blocks_lengths(self):
        with pytest.raises(InvalidBoardsAndBlocksError):
            PatchBoardsAndBlocks(board_ids=["board-1"], board_patches=[]).is_valid()
        with pytest.raises(InvalidBoardsAndBlocksError):
            PatchBoardsAndBlocks(
                board_ids=["board-1"],
                board_patches=[BoardPatch()],
                block_ids=["b1"],
            ).is_valid()

    def test_delete_boards_and_blocks_requires_board(self):
        with pytest.raises(InvalidBoardsAndBlocksError):
            DeleteBoardsAndBlocks(blocks=["b1"]).is_valid()


class TestOtherEntities:
    def test_user_dict_omits_credentials(self):
        user = User(id="u1", username="alice", email="a@example.com", password="secret")
        data = user.to_dict()
        assert "password" not in data
        assert "mfa_secret" not in data

    def test_category_requires_name(self):
        with pytest.raises(ValidationError):
            Category(id="c1", name="", user_id="u1", team_id="t1").is_valid()

    def test_subscription_subscriber_type(self):
        sub = Subscription(
            block_type="card", block_id="b1", subscriber_type="robot", subscriber_id="u1"
        )
        with pytest.raises(ValidationError):
            sub.is_valid()

    def test_notification_hint_requires_modifier(self):
        hint = NotificationHint(block_type="card", block_id="b1", modified_by_id="")
        with pytest.raises(InvalidNotificationHintError):
            hint.is_valid()
