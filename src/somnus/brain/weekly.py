import logging
from datetime import datetime
from typing import Iterable, Optional

from somnus.brain import prompts
from somnus.brain.llm_gateway import LLMGateway, GatewayError
from somnus.core.database import Dream
from somnus.journal.analytics import week_bounds, dreams_in_range

logger = logging.getLogger("somnus.brain.weekly")


def format_dream_block(dream: Dream) -> str:
    return prompts.DREAM_BLOCK.format(
        date=dream.date.strftime("%Y-%m-%d %H:%M"),
        title=dream.title or "-",
        text=dream.text,
        interpretation=dream.interpretation or "-",
    )


class WeeklyAnalyzer:
    """Summarises the dreams of the current Monday-to-Sunday week in one prompt."""

    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    async def summarize(self, dreams: Iterable[Dream], language: str = "tr", now: Optional[datetime] = None) -> str:
        lang = prompts.normalize_language(language)
        start, end = week_bounds(now or datetime.now())
        weekly = sorted(dreams_in_range(dreams, start, end), key=lambda d: d.date)

        if not weekly:
            logger.debug("No dreams this week; skipping weekly analysis call.")
            return prompts.WEEKLY_EMPTY[lang]

        blocks = "".join(format_dream_block(d) for d in weekly)
        try:
            return await self.gateway.complete(prompts.weekly_prompt(blocks, lang))
        except GatewayError as e:
            logger.error(f"Weekly analysis failed: {e}")
            return prompts.WEEKLY_FAILED[lang]
