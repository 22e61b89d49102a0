import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from somnus.brain.interpreter import DreamInterpreter
from somnus.brain.llm_gateway import GatewayError
from somnus.core.database import DreamStore, Dream

logger = logging.getLogger("somnus.journal.service")


class DreamNotFound(Exception):
    """Raised for unknown dreams and for dreams owned by someone else alike."""


class AccountRequired(Exception):
    """The session principal has no user row, so it cannot own dreams."""


class JournalService:
    """
    Dream lifecycle on top of the store.

    Creation and title attachment are two independent writes. If the title
    never arrives the dream simply stays untitled.
    """

    def __init__(self, store: DreamStore, interpreter: Optional[DreamInterpreter] = None):
        self.store = store
        self.interpreter = interpreter

    async def list_dreams(self, user_id: str) -> List[Dream]:
        return await self.store.list_dreams(user_id)

    async def create_dream(
        self,
        user_id: str,
        text: str,
        title: Optional[str] = None,
        interpretation: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Dream:
        if not text or not text.strip():
            raise ValueError("Dream text is required")
        await self._require_account(user_id)
        dream = await self.store.create_dream(user_id, text, title=title, interpretation=interpretation, date=date)
        logger.info(f"Dream {dream.id} recorded for user {user_id}")
        return dream

    async def attach_title(self, dream_id: str, text: str, language: str = "tr") -> Optional[Dream]:
        """Best effort: generate a title and store it. Returns None on failure."""
        if self.interpreter is None:
            return None
        try:
            title = await self.interpreter.generate_title(text, language)
        except (GatewayError, ValueError) as e:
            logger.warning(f"Title generation failed for dream {dream_id}: {e}")
            return None
        return await self.store.update_dream(dream_id, title=title)

    async def _require_account(self, user_id: str) -> None:
        if await self.store.get_user(user_id) is None:
            raise AccountRequired(user_id)

    async def _owned_dream(self, user_id: str, dream_id: str) -> Dream:
        dream = await self.store.get_dream(dream_id)
        if dream is None or dream.user_id != user_id:
            raise DreamNotFound(dream_id)
        return dream

    async def update_dream(
        self,
        user_id: str,
        dream_id: str,
        title: Optional[str] = None,
        interpretation: Optional[str] = None,
    ) -> Dream:
        await self._owned_dream(user_id, dream_id)
        updated = await self.store.update_dream(dream_id, title=title, interpretation=interpretation)
        if updated is None:
            raise DreamNotFound(dream_id)
        return updated

    async def delete_dream(self, user_id: str, dream_id: str) -> None:
        await self._owned_dream(user_id, dream_id)
        if not await self.store.delete_dream(dream_id):
            raise DreamNotFound(dream_id)
        logger.info(f"Dream {dream_id} deleted by user {user_id}")

    async def sync_dreams(self, user_id: str, entries: Iterable[Dict[str, Any]]) -> List[Dream]:
        entries = list(entries)
        for entry in entries:
            if not entry.get("text"):
                raise ValueError("Every dream needs text")
        await self._require_account(user_id)
        return await self.store.bulk_create_dreams(user_id, entries)
