"""Async HTTP client for the multimodal model endpoint."""
import asyncio
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Optional, Sequence

import aiohttp

from .config import Settings
from .core.exceptions import InputError, ModelTimeoutError, UpstreamError
from .core.models import EncodedImage
from .prompts import TaskKind

logger = logging.getLogger(__name__)


def build_payload(model_name: str, images: Sequence[EncodedImage], prompt: str, task: TaskKind) -> dict:
    """Request body: every image first, then the prompt text, in one user message."""
    content = [{"image": image.data_url} for image in images]
    content.append({"text": prompt})
    return {
        "model": model_name,
        "input": {
            "task": TaskKind(task).value,
            "messages": [{"role": "user", "content": content}],
        },
    }


class ModelClient:
    """
    Sends one request per model call. No retries: a failed call aborts the run.

    The aiohttp session is created lazily inside the running loop and can be
    shared across calls; use ``async with ModelClient(...)`` or ``close()``.
    """

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=settings.request_timeout_seconds)

    async def __aenter__(self) -> "ModelClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def generate(
        self,
        images: Sequence[EncodedImage],
        prompt: str,
        *,
        task: TaskKind,
        stage: str,
        token: Optional[str] = None,
    ) -> Any:
        """
        Call the model and return the decoded JSON envelope.

        Args:
            images: Encoded images for this call (may be empty for aggregation)
            prompt: Instruction text
            task: Kind of call, sent alongside the messages
            stage: Label used in logs and errors, e.g. "batch 2/3"
            token: Bearer token; falls back to ``settings.api_token``

        Raises:
            InputError: If no token is available
            ModelTimeoutError: If the call exceeds ``request_timeout_seconds``
            UpstreamError: On a non-2xx status, a transport failure or a non-JSON body
        """
        token = token or self.settings.api_token
        if not token:
            raise InputError("an API token is required (form field, --token or FAPIAO_API_TOKEN)")

        payload = build_payload(self.settings.model_name, images, prompt, task)
        headers = dict(self.settings.api_headers)
        headers["Authorization"] = f"Bearer {token}"

        session = self._ensure_session()
        started = time.monotonic()
        logger.info(f"[{stage.upper()}] Calling {self.settings.model_name} with {len(images)} image(s)")

        try:
            async with session.post(
                self.settings.api_url,
                json=payload,
                headers=headers,
                timeout=self._timeout,
            ) as response:
                body = await response.text()
                status = response.status
        except asyncio.TimeoutError:
            logger.error(f"[{stage.upper()}] Timed out after {self.settings.request_timeout_seconds:g}s")
            raise ModelTimeoutError(stage, self.settings.request_timeout_seconds)
        except aiohttp.ClientError as e:
            logger.error(f"[{stage.upper()}] Transport failure: {e}")
            raise UpstreamError(stage, None, str(e), reason="transport failure")

        elapsed = time.monotonic() - started
        self._save_response(stage, body)

        if not 200 <= status < 300:
            logger.error(f"[{stage.upper()}] HTTP {status} after {elapsed:.1f}s: {body[:200]}")
            raise UpstreamError(stage, status, body)

        try:
            envelope = json.loads(body)
        except json.JSONDecodeError:
            logger.error(f"[{stage.upper()}] Response body is not JSON: {body[:200]}")
            raise UpstreamError(stage, status, body, reason="response body is not JSON")

        logger.info(f"[{stage.upper()}] Response received in {elapsed:.1f}s")
        return envelope

    def _save_response(self, stage: str, body: str) -> Optional[Path]:
        """Save the raw response body for debugging."""
        if not self.settings.debug_responses:
            return None
        directory = Path(self.settings.responses_directory)
        directory.mkdir(parents=True, exist_ok=True)
        slug = re.sub(r"[^A-Za-z0-9]+", "_", stage).strip("_") or "call"
        path = directory / f"{slug}_{time.strftime('%Y%m%d_%H%M%S')}_{time.monotonic_ns()}.json"
        with open(path, "w", encoding="utf-8") as f:
            f.write(body)
        logger.debug(f"[{stage.upper()}] Raw response saved to {path}")
        return path
