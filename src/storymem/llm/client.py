"""
文本生成网关 (OpenAI Chat Completions 兼容)

- generate: 单轮 system + user, 返回文本
- generate_with_tools: 携带工具定义, 返回文本与已解码的工具调用

所有传输错误、非 2xx 响应、无法解码的响应都统一抛出 GatewayError。
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import GatewayError
from .converters.tools import convert_tool_calls_from_openai, convert_tools_to_openai
from .types import Tool, ToolResponse

logger = logging.getLogger(__name__)


def normalize_base_url(url: str) -> str:
    """去掉末尾的 / 与 /chat/completions"""
    url = (url or "").strip().rstrip("/")
    if url.endswith("/chat/completions"):
        url = url[: -len("/chat/completions")].rstrip("/")
    return url


class LLMClient:
    """OpenAI 兼容的文本生成客户端"""

    def __init__(
        self,
        base_url: str = "",
        api_key: str = "",
        model: str = "",
        temperature: float = 0.3,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self._api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> LLMClient:
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        )

    @property
    def available(self) -> bool:
        return bool(self.base_url and self._api_key)

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        message = await self._chat({"messages": messages, "max_tokens": max_tokens})
        content = message.get("content") or ""
        if not content.strip():
            raise GatewayError("Empty completion")
        return content

    async def generate_with_tools(
        self, prompt: str, tools: list[Tool], max_tokens: int
    ) -> ToolResponse:
        message = await self._chat({
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "tools": convert_tools_to_openai(tools),
            "tool_choice": "auto",
        })
        return ToolResponse(
            content=message.get("content") or "",
            tool_calls=convert_tool_calls_from_openai(message.get("tool_calls") or []),
        )

    async def _chat(self, body: dict[str, Any]) -> dict:
        if not self.available:
            raise GatewayError("Text generation gateway is not configured")

        payload = {"model": self.model, "temperature": self.temperature, **body}
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                logger.warning(f"[LLM] Request failed: {type(e).__name__}: {e}")
                raise GatewayError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            logger.warning(f"[LLM] HTTP {resp.status_code}: {resp.text[:200]}")
            raise GatewayError(f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            data = resp.json()
            message = data["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GatewayError(f"Malformed completion response: {e}") from e

        if not isinstance(message, dict):
            raise GatewayError("Malformed completion response: message is not an object")
        return message
