"""Board ownership checks shared by every mutation boundary."""

from __future__ import annotations

import logging
from typing import Callable

from .errors import OwnershipError
from .models import Block, Board
from .repository import BlockRepository, BoardRepository

logger = logging.getLogger(__name__)

TeamAccess = Callable[[str, str], bool]  # (actor_id, team_id) -> allowed


def _no_team_access(actor_id: str, team_id: str) -> bool:
    return False


class AccessPolicy:
    """Decides whether an actor may see or change a board's contents.

    Direct ownership is `board.user_id == actor_id`. Team-scoped boards
    defer to the injected team_access predicate; team membership itself is
    somebody else's concern.
    """

    def __init__(
        self,
        boards: BoardRepository,
        blocks: BlockRepository,
        team_access: TeamAccess | None = None,
    ):
        self._boards = boards
        self._blocks = blocks
        self._team_access = team_access or _no_team_access

    def can_access_board(self, actor_id: str, board: Board | None) -> bool:
        if board is None:
            return False
        if board.user_id == actor_id:
            return True
        if board.team_id is not None:
            return self._team_access(actor_id, board.team_id)
        return False

    def owns_block(self, actor_id: str, block_id: str) -> bool:
        block = self._blocks.get_block(block_id)
        if block is None:
            return False
        return self.can_access_board(actor_id, self._boards.get_board(block.board_id))

    def require_board(self, actor_id: str, board_id: str) -> Board:
        board = self._boards.get_board(board_id)
        if board is None or not self.can_access_board(actor_id, board):
            logger.warning(f"Access denied: {actor_id} on board {board_id}")
            raise OwnershipError(actor_id, f"board {board_id}")
        return board

    def require_block(self, actor_id: str, block_id: str) -> Block:
        """Return the block if actor_id owns its board, else raise.

        A missing block is treated as not owned so callers cannot test
        for ids they have no rights to.
        """
        block = self._blocks.get_block(block_id)
        if block is None or not self.owns_block(actor_id, block_id):
            logger.warning(f"Access denied: {actor_id} on block {block_id}")
            raise OwnershipError(actor_id, f"block {block_id}")
        return block
