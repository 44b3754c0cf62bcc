import httpx
import logging
from typing import Dict, List, Any, Optional
from evofit.core.config import settings

logger = logging.getLogger(__name__)


class LLMClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.openai_base_url
        self.model = model or settings.openai_model
        self.headers = {"Authorization": f"Bearer {api_key or settings.openai_api_key}"}
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout if timeout is not None else settings.generation_timeout_s,
            transport=transport,
        )

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send chat completion request to OpenAI-compatible endpoint"""

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }

        if max_tokens:
            payload["max_tokens"] = max_tokens

        if response_format:
            payload["response_format"] = response_format

        try:
            logger.info(f"Sending chat request to {self.base_url}")
            response = await self.client.post("/chat/completions", json=payload)
            response.raise_for_status()

            result = response.json()
            logger.info("Chat completion successful")
            return result

        except httpx.HTTPError as e:
            logger.error(f"HTTP error in chat completion: {e}")
            raise

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
