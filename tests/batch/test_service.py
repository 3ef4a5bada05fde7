from __future__ import annotations

import pytest

from fixtures.openai import FakeClientFactory, ProviderError
from markpack.batch.config import TranscriptionSettings
from markpack.batch.errors import ServiceClosedError, TranscriptionError
from markpack.batch.service import TranscriptionService


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _service(factory, clock=None, **kwargs) -> TranscriptionService:
    clock = clock or _Clock()
    kwargs.setdefault("min_interval", 0.0)
    return TranscriptionService(
        factory, clock=clock, sleep=clock.sleep, **kwargs
    )


def test_transcribe_calls_whisper_with_text_format(openai_factory):
    service = _service(openai_factory, request_timeout=12.0)

    text = service.transcribe(b"audio", filename="a.mp3", credential="sk-1")

    assert text == "transcript of a.mp3"
    call = openai_factory.calls[0]
    assert call["model"] == "whisper-1"
    assert call["file"] == ("a.mp3", b"audio")
    assert call["response_format"] == "text"
    assert call["timeout"] == 12.0
    client = openai_factory.instances[0]
    assert client.api_key == "sk-1"
    assert client.timeout == 12.0


def test_identical_audio_is_served_from_cache(openai_factory):
    service = _service(openai_factory)
    first = service.transcribe(b"same", filename="a.mp3", credential="k")
    second = service.transcribe(b"same", filename="b.mp3", credential="k")
    assert first == second
    assert len(openai_factory.calls) == 1


def test_cache_entries_expire(openai_factory):
    clock = _Clock()
    service = _service(openai_factory, clock, cache_ttl=10.0)
    service.transcribe(b"same", filename="a.mp3", credential="k")
    clock.now += 11
    service.transcribe(b"same", filename="a.mp3", credential="k")
    assert len(openai_factory.calls) == 2


def test_zero_ttl_disables_cache(openai_factory):
    service = _service(openai_factory, cache_ttl=0)
    service.transcribe(b"same", filename="a.mp3", credential="k")
    service.transcribe(b"same", filename="a.mp3", credential="k")
    assert len(openai_factory.calls) == 2


def test_one_client_per_credential(openai_factory):
    service = _service(openai_factory)
    service.transcribe(b"1", filename="a.mp3", credential="k1")
    service.transcribe(b"2", filename="a.mp3", credential="k1")
    service.transcribe(b"3", filename="a.mp3", credential="k2")
    assert [client.api_key for client in openai_factory.instances] == [
        "k1",
        "k2",
    ]


def test_requests_are_spaced_by_min_interval(openai_factory):
    clock = _Clock()
    service = _service(openai_factory, clock, min_interval=2.0)
    service.transcribe(b"1", filename="a.mp3", credential="k")
    service.transcribe(b"2", filename="a.mp3", credential="k")
    service.transcribe(b"3", filename="a.mp3", credential="k")
    assert clock.sleeps == [2.0, 2.0]


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (ProviderError("bad key", status_code=401), "Invalid API key"),
        (ProviderError("slow down", status_code=429), "Rate limit exceeded"),
        (
            ProviderError("server exploded", status_code=500),
            "Transcription API error: server exploded",
        ),
    ],
)
def test_provider_errors_are_translated(error, message):
    def fail(_kwargs):
        raise error

    service = _service(FakeClientFactory(side_effect=fail))
    with pytest.raises(TranscriptionError) as excinfo:
        service.transcribe(b"x", filename="a.mp3", credential="k")
    assert str(excinfo.value) == message


def test_failed_calls_are_not_cached():
    attempts = []

    def flaky(kwargs):
        attempts.append(kwargs)
        if len(attempts) == 1:
            raise ProviderError("temporary", status_code=503)
        return "recovered"

    service = _service(FakeClientFactory(side_effect=flaky))
    with pytest.raises(TranscriptionError):
        service.transcribe(b"x", filename="a.mp3", credential="k")
    assert service.transcribe(b"x", filename="a.mp3", credential="k") == (
        "recovered"
    )


def test_missing_key_from_factory_becomes_transcription_error():
    def factory(api_key=None, *, timeout=None):
        raise RuntimeError("OPENAI_API_KEY not found in environment.")

    service = _service(factory)
    with pytest.raises(TranscriptionError, match="OPENAI_API_KEY"):
        service.transcribe(b"x", filename="a.mp3", credential=None)


def test_close_is_idempotent_and_closes_clients(openai_factory):
    service = _service(openai_factory)
    service.transcribe(b"x", filename="a.mp3", credential="k")

    service.close()
    service.close()

    assert service.closed
    assert openai_factory.instances[0].closed
    with pytest.raises(ServiceClosedError):
        service.transcribe(b"x", filename="a.mp3", credential="k")


def test_context_manager_closes(openai_factory):
    with _service(openai_factory) as service:
        service.transcribe(b"x", filename="a.mp3", credential="k")
    assert service.closed


def test_from_settings(openai_factory):
    settings = TranscriptionSettings(
        model="gpt-4o-transcribe",
        cache_ttl=5.0,
        min_interval=0.0,
        request_timeout=30.0,
    )
    service = TranscriptionService.from_settings(
        settings, client_factory=openai_factory
    )
    service.transcribe(b"x", filename="a.mp3", credential="k")
    assert openai_factory.calls[0]["model"] == "gpt-4o-transcribe"
    assert service.cache_ttl == 5.0
