from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)

GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def text_part(text: str) -> Dict[str, Any]:
	return {"text": text}


def inline_image_part(mime_type: str, data_b64: str) -> Dict[str, Any]:
	return {"inlineData": {"mimeType": mime_type, "data": data_b64}}


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		# Google AI Studio (Generative Language API), key travels in the query string
		self.base_url = base_url or GENERATE_URL.format(model=self.model)
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds, transport=transport)

	async def generate(self, prompt: str) -> str:
		return await self.generate_multimodal([text_part(prompt)])

	async def generate_multimodal(self, parts: List[Dict[str, Any]], *, role: str = "user") -> str:
		payload: Dict[str, Any] = {"contents": [{"role": role, "parts": parts}]}
		return await self._post_payload(payload)

	async def _post_payload(self, payload: Dict[str, Any]) -> str:
		try:
			r = await self._client.post(self.base_url, params={"key": self.api_key}, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			logger.warning("Gemini returned %s: %s", http_err.response.status_code, http_err.response.text[:200])
			raise
		except httpx.RequestError as net_err:
			logger.warning("Gemini request failed: %s", net_err)
			raise
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as e:
			raise RuntimeError(f"Unexpected Gemini response: {r.text}") from e

	async def aclose(self) -> None:
		await self._client.aclose()
