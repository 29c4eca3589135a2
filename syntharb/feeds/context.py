"""Game context side-channel keyed by game id."""

from typing import Optional

import structlog

from syntharb.models.schemas import GameContext

logger = structlog.get_logger()


class GameContextStore:
    """
    Latest ``GameContext`` per game, written by a live-scoring collaborator
    and read by the processor at detection time.
    """

    def __init__(self):
        self._contexts: dict[str, GameContext] = {}
        self.logger = logger.bind(component="game_context")

    def update(self, game_id: str, context: GameContext) -> None:
        self._contexts[game_id] = context

    def get(self, game_id: str) -> Optional[GameContext]:
        return self._contexts.get(game_id)

    def remove(self, game_id: str) -> None:
        if self._contexts.pop(game_id, None) is not None:
            self.logger.debug("Game context removed", game_id=game_id)

    def __len__(self) -> int:
        return len(self._contexts)
