import json
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .errors import ProviderError
from .schemas import CompletionResponse, TokenUsage


ALLOWED_ROLES = {"system", "user", "assistant"}


class CompletionProvider(Protocol):
    name: str

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> CompletionResponse:
        ...


class ChatCompletionProvider:
    """Text completion over an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        name: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        max_output_tokens: Optional[int] = None,
        cost_per_1k_tokens: float = 0.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.name = name or model
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.client = httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, Any]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, Any]] = []
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            content = msg.get("content")
            if role not in ALLOWED_ROLES or not isinstance(content, str) or not content.strip():
                continue
            sanitized.append({"role": role, "content": content})
        return sanitized

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                return json.dumps(data, ensure_ascii=True)
        except Exception:
            pass
        try:
            return response.text
        except Exception:
            return ""

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> Dict[str, Any]:
        cleaned = self._sanitize_messages(messages)
        if not cleaned:
            raise ValueError("messages must include at least one non-empty entry")
        final_max_tokens = max_tokens
        if self.max_output_tokens:
            final_max_tokens = min(max_tokens, self.max_output_tokens)
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": cleaned,
            "temperature": temperature,
            "max_tokens": final_max_tokens,
            "stream": False,
        }
        url = f"{self.base_url}/chat/completions"
        try:
            resp = await self.client.post(url, json=payload, headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_error_detail(exc.response)
            raise ProviderError(
                f"{self.name}: HTTP {exc.response.status_code} from {url}: {detail}"
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(f"{self.name}: request to {url} failed: {exc}") from exc
        data = resp.json()
        if not isinstance(data, dict):
            raise ProviderError(f"{self.name}: unexpected response body")
        return data

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> CompletionResponse:
        started = time.perf_counter()
        data = await self.chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        latency_ms = (time.perf_counter() - started) * 1000.0
        choices = data.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        text = message.get("content")
        if not text:
            # Reasoning models sometimes leave content empty and put the answer here.
            text = message.get("reasoning") or message.get("reasoning_content") or ""
        usage = data.get("usage") or {}
        tokens = TokenUsage(
            input=int(usage.get("prompt_tokens") or 0),
            output=int(usage.get("completion_tokens") or 0),
            total=int(usage.get("total_tokens") or 0),
        )
        return CompletionResponse(
            text=text,
            model=str(data.get("model") or self.model),
            provider=self.name,
            tokens_used=tokens,
            cost=tokens.total / 1000.0 * self.cost_per_1k_tokens,
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
