import logging
from typing import List, Dict, Any

from somnus.brain import prompts
from somnus.brain.llm_gateway import LLMGateway

logger = logging.getLogger("somnus.brain.interpreter")


class DreamInterpreter:
    """
    The three LLM-backed call sites: interpretation, title and chat.
    All of them share the gateway's key failover.
    """

    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    async def interpret(self, text: str, language: str = "tr") -> str:
        if not text or not text.strip():
            raise ValueError("Dream text is required")
        return await self.gateway.complete(prompts.interpretation_prompt(text, language))

    async def generate_title(self, text: str, language: str = "tr") -> str:
        if not text or not text.strip():
            raise ValueError("Dream text is required")
        title = await self.gateway.complete(prompts.title_prompt(text, language))
        # Models like to wrap the title in quotes despite the instructions
        return title.strip().strip('"').strip()

    async def chat(self, messages: List[Dict[str, Any]]) -> str:
        """
        Accepts a message list but forwards only the last message's content.
        Earlier turns are not sent to the provider.
        """
        if not messages:
            raise ValueError("Messages array is required")
        content = messages[-1].get("content") if isinstance(messages[-1], dict) else None
        if not content:
            raise ValueError("Last message has no content")
        return await self.gateway.complete(content)
