from typing import Optional
from langchain_openai import ChatOpenAI
from langchain_core.output_parsers import StrOutputParser
from app.prompts.advice_prompts import AdvicePromptManager
from app.prompts import messages
from app.schemas.conversation_schemas import ConversationState
from configs.settings import Settings
from configs.logger import logger


def build_advice_llm(settings: Settings) -> Optional[ChatOpenAI]:
    """Groq serves an OpenAI compatible API, so the OpenAI chat model talks to it directly."""
    if not settings.GROQ_API_KEY:
        return None
    return ChatOpenAI(
        temperature=0.3,
        model=settings.GROQ_MODEL,
        api_key=settings.GROQ_API_KEY,
        base_url=settings.GROQ_BASE_URL,
        max_tokens=300,
        timeout=10,
    )


class AdviceClient:
    def __init__(self, llm: Optional[ChatOpenAI], support_phone: str):
        self.support_phone = support_phone
        self.prompt_manager = AdvicePromptManager(support_phone)
        self.chain = self.prompt_manager.prompt | llm | StrOutputParser() if llm else None

    async def advise(self, text: str, state: ConversationState) -> str:
        if self.chain is None:
            return messages.advice_fallback(self.support_phone)
        try:
            answer = await self.chain.ainvoke(self.prompt_manager.variables(text, state))
            answer = answer.strip()
            return answer or messages.advice_fallback(self.support_phone)
        except Exception as e:
            logger.error(f"Advice model call failed: {str(e)}")
            return messages.advice_fallback(self.support_phone)
