from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .errors import GenerationError
from .settings import settings

logger = logging.getLogger(__name__)


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
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds, transport=transport)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds, transport=transport)

	async def generate(self, prompt: str, *, json_mode: bool = False) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if json_mode:
			payload["generationConfig"] = {"responseMimeType": "application/json"}
		return await self._post_payload(payload, fallback_messages=[{"role": "user", "content": prompt}])

	async def chat(
		self,
		message: str,
		*,
		history: Optional[List[Dict[str, Any]]] = None,
		system_instruction: Optional[str] = None,
	) -> str:
		contents = list(history or []) + [{"role": "user", "parts": [{"text": message}]}]
		payload: Dict[str, Any] = {"contents": contents}
		fallback_messages: List[Dict[str, str]] = []
		if system_instruction:
			payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
			fallback_messages.append({"role": "system", "content": system_instruction})
		fallback_messages.extend(_contents_to_messages(contents))
		return await self._post_payload(payload, fallback_messages=fallback_messages)

	async def _post_payload(
		self,
		payload: Dict[str, Any],
		*,
		fallback_messages: Optional[List[Dict[str, str]]],
	) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			last_error = GenerationError(f"Gemini returned HTTP {http_err.response.status_code}: {_error_message(http_err.response)}")
		except httpx.RequestError as net_err:
			last_error = GenerationError(f"Gemini request failed: {net_err}")
		if last_error is None:
			try:
				data = r.json()
				return data["candidates"][0]["content"]["parts"][0]["text"]
			except (ValueError, KeyError, IndexError, TypeError):
				last_error = GenerationError(f"Unexpected Gemini response: {r.text[:500]}")
		logger.warning("gemini call failed: %s", last_error)
		if not self._fallback_enabled or not fallback_messages:
			raise last_error
		return await self._fallback_generate(fallback_messages, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, messages: List[Dict[str, str]], primary_error: Exception) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": messages,
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
			raise GenerationError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err


def _error_message(response: httpx.Response) -> str:
	try:
		return response.json()["error"]["message"]
	except (ValueError, KeyError, TypeError):
		return response.text[:500]


def _contents_to_messages(contents: List[Dict[str, Any]]) -> List[Dict[str, str]]:
	messages: List[Dict[str, str]] = []
	for turn in contents:
		text = "".join(str(p.get("text", "")) for p in turn.get("parts") or [] if isinstance(p, dict))
		role = "assistant" if turn.get("role") == "model" else "user"
		messages.append({"role": role, "content": text})
	return messages
