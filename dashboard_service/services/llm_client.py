"""
LLM 调用封装
通过 OpenAI 兼容的 chat completions 接口发起一次 JSON 模式请求，不做重试。
"""

import logging
from typing import Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from dashboard_service.config import settings
from dashboard_service.errors import LLMError

logger = logging.getLogger(__name__)


class LLMClient:
    """LLM 接口客户端"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = settings.LLM_API_KEY if api_key is None else api_key
        self._base_url = base_url or settings.LLM_BASE_URL
        self.model = model or settings.LLM_MODEL
        self._timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self._http_client = http_client
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._api_key:
            raise LLMError("LLM_API_KEY 未配置")
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    async def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        """
        发送一次 JSON 模式的 chat completion 请求

        Returns:
            模型返回的原始文本（尚未解析）

        Raises:
            LLMError: 网络错误、非 2xx 响应或空响应
        """
        client = self._get_client()
        logger.debug(f"发送 LLM 请求，模型: {self.model}，提示长度: {len(user_prompt)}")
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error(f"LLM 请求失败: {type(exc).__name__}: {exc}")
            raise LLMError(f"LLM 请求失败: {type(exc).__name__}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            logger.error("LLM 返回空响应")
            raise LLMError("LLM 返回空响应")
        logger.debug(f"LLM 返回内容长度: {len(content)}")
        return content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# ── 模块级别单例 ──────────────────────────────────────────
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


async def close_llm_client() -> None:
    global _llm_client
    if _llm_client is not None:
        await _llm_client.close()
        _llm_client = None
