"""Consultation API client for call bookkeeping.

After a call the client hands the recording location over to the
consultation service and marks the video session as ended. The service
stores the URL against the appointment; producing the recording itself is
out of scope here.
"""

import logging
from typing import Any

import aiohttp

from src.session_client.config import ClientConfig
from src.session_client.errors import RecordingHandoffError

logger = logging.getLogger(__name__)


class ConsultationApiClient:
    """HTTP client for the ``/video-session/{appointment_id}`` endpoints."""

    def __init__(
        self,
        base_url: str,
        auth_token: str | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        """Initialize API client.

        Args:
            base_url: API root, e.g. ``http://host/api/video-consultancy``
            auth_token: Bearer token sent with every request
            timeout_s: Total per-request timeout
        """
        self.base_url = base_url.rstrip("/")
        self._auth_token = auth_token
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_config(
        cls, config: ClientConfig, auth_token: str | None = None
    ) -> "ConsultationApiClient":
        return cls(config.api_base_url, auth_token=auth_token, timeout_s=config.request_timeout_s)

    async def __aenter__(self) -> "ConsultationApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else None
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
        return self._session

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def save_recording(self, appointment_id: str | int, recording_url: str) -> dict[str, Any]:
        """Store the recording location for an appointment.

        Args:
            appointment_id: Appointment (room) identifier
            recording_url: Where the recording can be fetched

        Returns:
            Decoded response body

        Raises:
            ValueError: If ``recording_url`` is empty
            RecordingHandoffError: If the request fails or is rejected
        """
        if not recording_url:
            raise ValueError("recording_url is required")

        return await self._post(
            f"/video-session/{appointment_id}/recording", {"recording_url": recording_url}
        )

    async def end_video_call(self, appointment_id: str | int) -> dict[str, Any]:
        """Mark the appointment's video session as ended.

        Raises:
            RecordingHandoffError: If the request fails or is rejected
        """
        return await self._post(f"/video-session/{appointment_id}/end", {})

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        session = self._ensure_session()

        try:
            async with session.post(url, json=payload) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise RecordingHandoffError(
                        f"POST {path} failed with HTTP {response.status}: {detail[:200]}",
                        status=response.status,
                    )
                body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RecordingHandoffError(f"POST {path} failed: {e}") from e
        except TimeoutError as e:
            raise RecordingHandoffError(f"POST {path} timed out") from e

        logger.info("Consultation API request succeeded", extra={"path": path})
        return body if isinstance(body, dict) else {"data": body}
