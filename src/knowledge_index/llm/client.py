from typing import List, Dict, Any, Optional
import httpx
from ..config import LlmSettings


class LLMClient:
    """
    Minimal client for an OpenAI-compatible ``/chat/completions`` endpoint
    (OpenAI, Ollama's ``/v1`` API, vLLM, ...).
    """

    def __init__(
        self,
        config: LlmSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    async def chat(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Returns the raw assistant message dict, e.g.:
        {
            "role": "assistant",
            "content": "..."
        }
        """
        payload: Dict[str, Any] = {
            "model": model or self.config.model,
            "messages": [{"role": "system", "content": system_prompt}] + messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        headers = {}
        if self.config.api_key is not None:
            headers["Authorization"] = f"Bearer {self.config.api_key.get_secret_value()}"

        async with httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        ) as client:
            resp = await client.post(
                f"{self.config.base_url.rstrip('/')}/chat/completions",
                json=payload,
                headers=headers,
            )
        resp.raise_for_status()
        data = resp.json()
        return data["choices"][0]["message"]
