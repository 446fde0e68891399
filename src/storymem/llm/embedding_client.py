"""
Embedding 网关 (OpenAI /embeddings 兼容)
"""

from __future__ import annotations

import logging

import httpx

from ..core.errors import GatewayError
from .client import normalize_base_url

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """OpenAI 兼容的 Embedding 客户端, 输出维度由配置固定"""

    def __init__(
        self,
        base_url: str = "",
        api_key: str = "",
        model: str = "text-embedding-3-small",
        dimensions: int = 1024,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        if self.base_url.endswith("/embeddings"):
            self.base_url = self.base_url[: -len("/embeddings")]
        self._api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> EmbeddingClient:
        return cls(
            base_url=settings.embedding_base_url,
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            timeout=settings.embedding_timeout,
        )

    @property
    def available(self) -> bool:
        return bool(self.base_url and self._api_key)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        批量计算向量

        Returns:
            与输入顺序一致的向量列表
        """
        if not texts:
            return []
        if not self.available:
            raise GatewayError("Embedding gateway is not configured")

        payload = {"model": self.model, "input": texts, "dimensions": self.dimensions}
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.post(f"{self.base_url}/embeddings", json=payload, headers=headers)
            except httpx.HTTPError as e:
                logger.warning(f"[Embedding] Request failed: {type(e).__name__}: {e}")
                raise GatewayError(f"Embedding request failed: {e}") from e

        if resp.status_code >= 400:
            logger.warning(f"[Embedding] HTTP {resp.status_code}: {resp.text[:200]}")
            raise GatewayError(f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            rows = sorted(resp.json()["data"], key=lambda r: r.get("index", 0))
            vectors = [[float(x) for x in row["embedding"]] for row in rows]
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayError(f"Malformed embedding response: {e}") from e

        if len(vectors) != len(texts):
            raise GatewayError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors
