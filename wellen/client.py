# wellen/client.py
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from .aggregation import is_legacy_composite, split_legacy_entry
from .config import API_BASE_URL, LIST_RETRY_ATTEMPTS, LIST_RETRY_DELAY
from .models import (
    Actor,
    BatchProgressRequest,
    BatchProgressResult,
    Location,
    PhotoProgress,
    Submission,
    Wave,
    WavePayload,
)
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

# Cold starts of the store sometimes answer with an empty list or drop the
# connection; only the initial list fetch is retried.
WAVE_LIST_RETRY = RetryPolicy(attempts=LIST_RETRY_ATTEMPTS, delay=LIST_RETRY_DELAY)


class WellenApiError(Exception):
    """The store answered with an error status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class WellenClient:
    """
    Async client for the wave store REST API.

    Every call is one round trip; nothing is cached. Errors surface as
    `WellenApiError` and leave the caller's state untouched.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        http: Optional[httpx.AsyncClient] = None,
        list_retry: RetryPolicy = WAVE_LIST_RETRY,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.AsyncClient(headers={"Content-Type": "application/json"})
        self.list_retry = list_retry

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "WellenClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ---------------------------------------------------------------
    # Transport
    # ---------------------------------------------------------------
    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._http.request(method, url, json=json)
        except httpx.HTTPError as exc:
            logger.error("[WELLEN_HTTP] %s %s failed: %s", method, path, exc)
            raise WellenApiError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            message = response.reason_phrase or "request failed"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("error"):
                    message = str(body["error"])
            except ValueError:
                pass
            logger.error("[WELLEN_HTTP] %s %s -> %s %s", method, path, response.status_code, message)
            raise WellenApiError(message, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error("[WELLEN_HTTP] %s %s -> %s with a non-JSON body", method, path, response.status_code)
            raise WellenApiError(f"{method} {path} returned a non-JSON body", status_code=response.status_code) from exc

    # ---------------------------------------------------------------
    # Waves
    # ---------------------------------------------------------------
    async def _fetch_waves(self) -> List[Wave]:
        data = await self._request("GET", "/wellen")
        return [Wave.model_validate(w) for w in data or []]

    async def list_waves(self) -> List[Wave]:
        """`GET /wellen`, retried on failure or on an empty answer."""
        return await retry_async(
            self._fetch_waves,
            self.list_retry,
            retry_on=(WellenApiError,),
            retry_if=lambda waves: len(waves) == 0,
            label="GET /wellen",
        )

    async def get_wave(self, wave_id: str) -> Wave:
        return Wave.model_validate(await self._request("GET", f"/wellen/{wave_id}"))

    async def create_wave(self, payload: WavePayload) -> Dict[str, Any]:
        return await self._request("POST", "/wellen", json=payload.to_wire()) or {}

    async def update_wave(self, wave_id: str, payload: WavePayload) -> Dict[str, Any]:
        return await self._request("PUT", f"/wellen/{wave_id}", json=payload.to_wire()) or {}

    async def delete_wave(self, wave_id: str) -> None:
        await self._request("DELETE", f"/wellen/{wave_id}")

    # ---------------------------------------------------------------
    # Progress
    # ---------------------------------------------------------------
    async def get_all_progress(self, wave_id: str) -> Union[List[Submission], PhotoProgress]:
        """Flat submissions, or `{type: 'foto', photos}` for photo-only waves."""
        data = await self._request("GET", f"/wellen/{wave_id}/all-progress")
        if isinstance(data, dict) and data.get("type") == "foto":
            return PhotoProgress.model_validate(data)
        submissions: List[Submission] = []
        for entry in data or []:
            entry = {"waveId": wave_id, **entry}
            if is_legacy_composite(entry):
                submissions.extend(split_legacy_entry(entry))
            else:
                submissions.append(Submission.model_validate(entry))
        return submissions

    async def submit_batch(self, wave_id: str, request: BatchProgressRequest) -> BatchProgressResult:
        data = await self._request("POST", f"/wellen/{wave_id}/progress/batch", json=request.to_wire())
        return BatchProgressResult.model_validate(data or {})

    async def update_submission(self, submission_id: str, quantity: int) -> None:
        await self._request("PUT", f"/wellen/submissions/{submission_id}", json={"quantity": quantity})

    async def delete_submission(self, submission_id: str) -> None:
        await self._request("DELETE", f"/wellen/submissions/{submission_id}")

    async def upload_image(self, image_base64: str, folder: str) -> str:
        data = await self._request("POST", "/wellen/upload-image", json={"image": image_base64, "folder": folder})
        url = (data or {}).get("url")
        if not url:
            raise WellenApiError("upload returned no url")
        return url

    # ---------------------------------------------------------------
    # Directories
    # ---------------------------------------------------------------
    async def list_actors(self) -> List[Actor]:
        data = await self._request("GET", "/gebietsleiter")
        return [Actor.model_validate(a) for a in data or []]

    async def list_locations(self) -> List[Location]:
        data = await self._request("GET", "/markets")
        return [Location.model_validate(m) for m in data or []]
