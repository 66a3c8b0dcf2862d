from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, Optional
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		config: Optional[Settings] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		cfg = config or default_settings
		self.api_key = api_key or cfg.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or cfg.gemini_model
		if cfg.gemini_provider == "vertex":
			project = cfg.vertex_project or "placeholder-project"
			region = cfg.vertex_region
			self.url = (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			self.url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=60, transport=transport)
		self._fallback_key = cfg.openrouter_api_key
		self._fallback_model = cfg.openrouter_model
		self._fallback_url = cfg.openrouter_base_url
		self._fallback_headers = {
			"Authorization": f"Bearer {cfg.openrouter_api_key}" if cfg.openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": cfg.openrouter_referer,
			"X-Title": cfg.openrouter_title,
		}

	async def generate(self, prompt: str, *, json_output: bool = False, temperature: float = 0.7) -> str:
		generation_config: Dict[str, Any] = {"temperature": temperature}
		if json_output:
			generation_config["responseMimeType"] = "application/json"
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": generation_config,
		}
		params: Dict[str, str] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self.url, params=params, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (httpx.HTTPError, KeyError, IndexError, ValueError) as primary_error:
			if not self._fallback_key:
				raise RuntimeError(f"Gemini call failed: {primary_error}") from primary_error
			logger.warning("Gemini call failed (%s); trying OpenRouter fallback", primary_error)
			return await self._fallback_generate(prompt, json_output=json_output, primary_error=primary_error)

	async def _fallback_generate(self, prompt: str, *, json_output: bool, primary_error: Exception) -> str:
		headers = {k: v for k, v in self._fallback_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._fallback_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		if json_output:
			payload["response_format"] = {"type": "json_object"}
		try:
			r = await self._client.post(self._fallback_url, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except (httpx.HTTPError, KeyError, IndexError, ValueError) as fallback_err:
			raise RuntimeError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err

	async def aclose(self) -> None:
		await self._client.aclose()
