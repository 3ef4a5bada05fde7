"""Speech-to-text service shared by the media converters.

The service owns a short-lived response cache, a process-wide rate budget and
one OpenAI client per credential. It is constructed once per run, injected
into the converters that need it and closed when the run ends.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Callable, Optional

from markpack.core.ai import load_client

from .config import TranscriptionSettings
from .errors import ServiceClosedError, TranscriptionError

__all__ = ["TRANSCRIPTION_ENDPOINT", "TranscriptionService"]

TRANSCRIPTION_ENDPOINT = "audio/transcriptions"

ClientFactory = Callable[..., Any]

_logger = logging.getLogger(__name__)


class TranscriptionService:
    """Cached, rate-limited access to the Whisper transcription endpoint."""

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        *,
        model: str = "whisper-1",
        cache_ttl: float = 300.0,
        min_interval: float = 1.0,
        request_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client_factory = client_factory or load_client
        self.model = model
        self.cache_ttl = cache_ttl
        self.min_interval = min_interval
        self.request_timeout = request_timeout
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or _logger

        self._lock = threading.Lock()
        self._rate_lock = threading.Lock()
        self._cache: dict[str, tuple[float, str]] = {}
        self._clients: dict[str, Any] = {}
        self._next_slot: Optional[float] = None
        self._closed = False

    @classmethod
    def from_settings(
        cls, settings: TranscriptionSettings, **kwargs: Any
    ) -> "TranscriptionService":
        return cls(
            model=settings.model,
            cache_ttl=settings.cache_ttl,
            min_interval=settings.min_interval,
            request_timeout=settings.request_timeout,
            **kwargs,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def transcribe(
        self, audio: bytes, *, filename: str, credential: Optional[str]
    ) -> str:
        """Return the plain-text transcript of ``audio``."""

        self._ensure_open()
        key = self._cache_key(audio)
        cached = self._cache_get(key)
        if cached is not None:
            self._logger.debug(
                "Transcription cache hit", extra={"audio_file": filename}
            )
            return cached

        client = self._client_for(credential)
        self._throttle()
        self._ensure_open()
        try:
            response = client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio),
                response_format="text",
                timeout=self.request_timeout,
            )
        except Exception as exc:
            raise _translate_error(exc) from exc

        text = _response_text(response)
        self._cache_put(key, text)
        self._logger.info(
            "Transcribed audio",
            extra={
                "audio_file": filename,
                "audio_bytes": len(audio),
                "transcript_length": len(text),
            },
        )
        return text

    def close(self) -> None:
        """Drop cached transcripts and close every client. Idempotent."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            clients = list(self._clients.values())
            self._clients.clear()
            self._cache.clear()
        for client in clients:
            closer = getattr(client, "close", None)
            if callable(closer):
                try:
                    closer()
                except Exception:
                    self._logger.warning(
                        "Failed to close transcription client", exc_info=True
                    )

    def __enter__(self) -> "TranscriptionService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ServiceClosedError("Transcription service is closed")

    def _cache_key(self, audio: bytes) -> str:
        digest = hashlib.sha256()
        digest.update(TRANSCRIPTION_ENDPOINT.encode("utf-8"))
        digest.update(b"\0")
        digest.update(self.model.encode("utf-8"))
        digest.update(b"\0")
        digest.update(audio)
        return digest.hexdigest()

    def _cache_get(self, key: str) -> Optional[str]:
        if self.cache_ttl <= 0:
            return None
        now = self._clock()
        with self._lock:
            expired = [
                cached for cached, (expires, _) in self._cache.items()
                if expires <= now
            ]
            for stale in expired:
                del self._cache[stale]
            entry = self._cache.get(key)
        return entry[1] if entry is not None else None

    def _cache_put(self, key: str, text: str) -> None:
        if self.cache_ttl <= 0:
            return
        with self._lock:
            if not self._closed:
                self._cache[key] = (self._clock() + self.cache_ttl, text)

    def _client_for(self, credential: Optional[str]) -> Any:
        fingerprint = hashlib.sha256(
            (credential or "").encode("utf-8")
        ).hexdigest()
        with self._lock:
            self._ensure_open()
            client = self._clients.get(fingerprint)
            if client is None:
                try:
                    client = self._client_factory(
                        credential, timeout=self.request_timeout
                    )
                except RuntimeError as exc:
                    raise TranscriptionError(str(exc)) from exc
                self._clients[fingerprint] = client
        return client

    def _throttle(self) -> None:
        if self.min_interval <= 0:
            return
        with self._rate_lock:
            now = self._clock()
            if self._next_slot is not None and now < self._next_slot:
                self._sleep(self._next_slot - now)
                now = self._clock()
            start = max(now, self._next_slot or now)
            self._next_slot = start + self.min_interval


def _translate_error(exc: Exception) -> TranscriptionError:
    if isinstance(exc, TranscriptionError):
        return exc
    status = getattr(exc, "status_code", None)
    name = type(exc).__name__
    if status == 401 or name == "AuthenticationError":
        return TranscriptionError("Invalid API key")
    if status == 429 or name == "RateLimitError":
        return TranscriptionError("Rate limit exceeded")
    message = getattr(exc, "message", None) or str(exc) or name
    return TranscriptionError(f"Transcription API error: {message}")


def _response_text(response: Any) -> str:
    # response_format="text" yields a plain string; newer SDKs may wrap it.
    if isinstance(response, str):
        return response.strip()
    text = getattr(response, "text", None)
    if isinstance(text, str):
        return text.strip()
    return str(response).strip()
