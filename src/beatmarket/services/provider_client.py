"""
Generation Provider Client
Thin wrappers around the synthesis, lossless conversion and stem separation APIs
"""

import time
from typing import Any, Dict, Optional

import httpx

from ..core.config import get_settings
from ..core.logging import pipeline_logger
from ..core.result import Result

settings = get_settings()


def is_api_error(status_code: int, body: Any) -> bool:
    """
    Decide whether a provider acceptance response reports an error.

    Providers answer HTTP 200 with an error envelope, so the body is
    inspected as well: ``code >= 400``, an ``error`` key, or a ``msg``
    mentioning "error".
    """
    if status_code >= 400:
        return True
    if not isinstance(body, dict):
        return True

    code = body.get("code")
    if isinstance(code, (int, float)) and code >= 400:
        return True
    if body.get("error"):
        return True

    message = body.get("msg") or body.get("message") or ""
    return isinstance(message, str) and "error" in message.lower()


def extract_task_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if isinstance(data, dict) and data.get("taskId"):
        return str(data["taskId"])
    if body.get("taskId"):
        return str(body["taskId"])
    return None


class GenerationProviderClient:
    """Provider API client bound to a single caller-supplied credential"""

    BASE_URL = settings.SUNO_API_BASE
    LOSSLESS_BASE_URL = settings.LOSSLESS_API_BASE

    def __init__(self, api_key: str, timeout: float = settings.PROVIDER_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GenerationProviderClient":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "User-Agent": "BeatMarket/1.0"
            }
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cleanup()

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Provider client not initialized. Use 'async with'.")
        return await self._client.post(url, json=payload)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    async def generate(
        self,
        title: str,
        style: str,
        model: str,
        callback_url: str,
        negative_tags: Optional[str] = None
    ) -> Result[str]:
        """Dispatch one instrumental generation; returns the provider task id"""

        payload: Dict[str, Any] = {
            "customMode": True,
            "instrumental": True,
            "model": model,
            "style": style,
            "title": title,
            "callBackUrl": callback_url,
        }
        if negative_tags:
            payload["negativeTags"] = negative_tags

        try:
            response = await self._post(f"{self.BASE_URL}/generate", payload)
            body = self._json(response)

            if response.status_code >= 400:
                pipeline_logger.log_stage_error(
                    operation="ProviderGenerate",
                    error=f"HTTP {response.status_code}",
                    response=body
                )
                return Result.err("Provider API error", status_code=response.status_code)

            task_id = extract_task_id(body)
            if is_api_error(response.status_code, body) and not task_id:
                pipeline_logger.log_stage_error(
                    operation="ProviderGenerate",
                    error="Provider reported an error",
                    response=body
                )
                code = body.get("code") if isinstance(body, dict) else None
                return Result.err(
                    "Provider API error",
                    status_code=int(code) if isinstance(code, (int, float)) and code >= 400 else 502
                )

            return Result.ok(task_id)

        except httpx.RequestError as e:
            pipeline_logger.log_stage_error(operation="ProviderGenerate", error=str(e))
            return Result.err(f"Provider request failed: {e}", status_code=502)

    async def _dispatch_job(
        self,
        operation: str,
        url: str,
        payload: Dict[str, Any]
    ) -> Result[Dict[str, Any]]:
        try:
            response = await self._post(url, payload)
            body = self._json(response)

            if is_api_error(response.status_code, body):
                pipeline_logger.log_stage_error(
                    operation=operation,
                    error=f"HTTP {response.status_code}",
                    response=body
                )
                return Result.err(f"{operation} rejected by provider", status_code=response.status_code)

            return Result.ok(body)

        except httpx.RequestError as e:
            pipeline_logger.log_stage_error(operation=operation, error=str(e))
            return Result.err(f"{operation} request failed: {e}", status_code=502)

    async def convert_to_wav(
        self,
        beat_id,
        audio_id: str,
        callback_url: str
    ) -> Result[Dict[str, Any]]:
        """Request lossless conversion of a finished track"""
        return await self._dispatch_job(
            "LosslessConversion",
            f"{self.LOSSLESS_BASE_URL}/wav/generate",
            {
                "taskId": f"wav-{beat_id}-{int(time.time() * 1000)}",
                "audioId": audio_id,
                "callBackUrl": callback_url,
            }
        )

    async def separate_stems(
        self,
        beat_id,
        audio_id: str,
        callback_url: str
    ) -> Result[Dict[str, Any]]:
        """Request stem separation of a finished track"""
        return await self._dispatch_job(
            "StemSeparation",
            f"{self.BASE_URL}/vocal-removal/generate",
            {
                "taskId": f"stems-{beat_id}-{int(time.time() * 1000)}",
                "audioId": audio_id,
                "type": "split_stem",
                "callBackUrl": callback_url,
            }
        )

    async def fetch_record(self, task_id: str) -> Result[Dict[str, Any]]:
        """Poll generation details for manual reconciliation"""
        if not self._client:
            raise RuntimeError("Provider client not initialized. Use 'async with'.")

        try:
            response = await self._client.get(
                f"{self.BASE_URL}/generate/record-info",
                params={"taskId": task_id}
            )
            body = self._json(response)
            if response.status_code >= 400 or not isinstance(body, dict):
                return Result.err("Provider poll failed", status_code=response.status_code)
            return Result.ok(body)

        except httpx.RequestError as e:
            return Result.err(f"Provider poll failed: {e}", status_code=502)

    async def cleanup(self) -> None:
        """Clean up resources"""
        if self._client:
            await self._client.aclose()
            self._client = None
