"""
Provider Client Contract
Every 3D generation provider sits behind the same three async methods:
generate_body_model, generate_clothing_model and health_check.

HTTP-backed clients share one httpx.AsyncClient each. Requests are awaited on
the event loop, so cancelling generate() closes the in-flight connection.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from gateway.errors import (
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderJobFailedError,
    ProviderResponseError,
    ProviderTimeoutError,
    UnsupportedInputError,
)
from gateway.schemas import (
    BodyModel3D,
    BodyScanOptions,
    ClothingGenOptions,
    ClothingModel3D,
    ImagePayload,
    ProviderConfig,
    VideoPayload,
)

logger = logging.getLogger(__name__)

JOB_PENDING = "pending"
JOB_SUCCEEDED = "succeeded"
JOB_FAILED = "failed"


@dataclass
class JobState:
    """Provider-specific job status mapped onto pending/succeeded/failed."""
    status: str
    output: Any = None
    error: Optional[str] = None
    raw_status: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JOB_SUCCEEDED, JOB_FAILED)


class ProviderClient(ABC):
    """Uniform contract the gateway dispatches through."""

    tag = "Provider"

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: BodyScanOptions,
        video: Optional[VideoPayload] = None,
    ) -> BodyModel3D:
        raise NotImplementedError

    @abstractmethod
    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
    ) -> ClothingModel3D:
        raise NotImplementedError

    @abstractmethod
    async def health_check(self) -> None:
        """Raise on any non-success response; return None when reachable."""
        raise NotImplementedError

    async def close(self) -> None:
        pass

    def require_images(self, images: List[ImagePayload], video: Optional[VideoPayload]) -> None:
        """Image-only providers ignore an accompanying video but cannot work from one alone."""
        if not images:
            kind = "video-only" if video is not None else "empty"
            raise UnsupportedInputError(self.name, f"{kind} requests are not supported")

    async def poll_job(
        self,
        job_id: str,
        fetch_status: Callable[[], Awaitable[Dict]],
        interpret: Callable[[Dict], JobState],
        interval: float,
        max_attempts: int,
    ) -> Any:
        """
        Poll a remote job at a fixed interval until it reaches a terminal state.

        Args:
            job_id: remote job identifier (for errors/logging)
            fetch_status: coroutine returning the raw status payload
            interpret: maps the raw payload onto a JobState
            interval: seconds between polls (fixed, no backoff)
            max_attempts: number of status fetches before giving up

        Returns:
            The job output on success.

        Raises:
            ProviderJobFailedError: the provider reported failure (no retry)
            ProviderTimeoutError: max_attempts fetched without a terminal state
        """
        for attempt in range(max_attempts):
            state = interpret(await fetch_status())

            if state.status == JOB_SUCCEEDED:
                logger.info(f"[{self.tag}] Job {job_id} succeeded after {attempt + 1} poll(s)")
                return state.output

            if state.status == JOB_FAILED:
                logger.warning(f"[{self.tag}] Job {job_id} failed ({state.raw_status}): {state.error}")
                raise ProviderJobFailedError(self.name, job_id, state.error)

            if attempt % 6 == 0:
                logger.info(
                    f"[{self.tag}] Still generating {job_id} "
                    f"({state.raw_status}, ~{attempt * interval:.0f}s elapsed)"
                )

            if attempt < max_attempts - 1:
                await asyncio.sleep(interval)

        logger.warning(f"[{self.tag}] Job {job_id} timed out after {max_attempts} polls")
        raise ProviderTimeoutError(self.name, job_id, max_attempts, interval)


class HTTPProviderClient(ProviderClient):
    """Provider reached over plain HTTPS/JSON with httpx."""

    health_path = "/models"

    def __init__(self, config: ProviderConfig, session: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self.session = session or httpx.AsyncClient(timeout=config.request_timeout)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def url(self, path: str) -> str:
        return f"{self.config.endpoint}{path}"

    async def close(self) -> None:
        await self.session.aclose()

    async def health_check(self) -> None:
        await self.request("GET", self.url(self.health_path))

    async def request_json(self, method: str, url: str, **kwargs) -> Any:
        response = await self.request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError:
            raise ProviderResponseError(
                self.name, f"non-JSON response from {url}: {response.text[:200]}"
            )

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        data: Any = None,
        files: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        merged = self.auth_headers()
        if json is not None:
            merged["Content-Type"] = "application/json"
        if headers:
            merged.update(headers)

        try:
            response = await self.session.request(
                method,
                url,
                json=json,
                data=data,
                files=files,
                headers=merged,
                timeout=self.config.request_timeout,
            )
        except httpx.TimeoutException:
            raise ProviderConnectionError(self.name, f"{method} {url} timed out")
        except httpx.RequestError as e:
            raise ProviderConnectionError(self.name, f"network error: {e}")

        if not 200 <= response.status_code < 300:
            raise ProviderHTTPError(self.name, response.status_code, response.text or "")
        return response
