"""Audio and video transcription converter.

Media payloads are split into ~10 minute MP3 segments with pydub (ffmpeg
must be on PATH), each segment is transcribed through the shared
:class:`~markpack.batch.service.TranscriptionService`, and the transcripts
are joined into one Markdown document.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydub import AudioSegment
from pydub.utils import make_chunks

from .errors import EmptyConversionError
from .models import ConversionOptions, RequestContent
from .naming import split_name
from .output import render_document
from .service import TranscriptionService

__all__ = ["MediaTranscriber", "SEGMENT_MS", "Splitter", "split_audio"]

SEGMENT_MS = 10 * 60 * 1000

Splitter = Callable[[bytes, str], list[bytes]]

# ffmpeg demuxer names that differ from the file extension.
_FFMPEG_FORMATS = {"mkv": "matroska"}

_logger = logging.getLogger(__name__)


def split_audio(
    payload: bytes, extension: str, *, segment_ms: int = SEGMENT_MS
) -> list[bytes]:
    """Decode ``payload`` and return MP3-encoded segments of ``segment_ms``."""

    normalized = extension.lower().lstrip(".")
    audio = AudioSegment.from_file(
        io.BytesIO(payload),
        format=_FFMPEG_FORMATS.get(normalized, normalized) or None,
    )
    segments: list[bytes] = []
    for chunk in make_chunks(audio, segment_ms):
        buffer = io.BytesIO()
        chunk.export(buffer, format="mp3")
        segments.append(buffer.getvalue())
    return segments


class MediaTranscriber:
    """Converter for raw audio/video uploads."""

    def __init__(
        self,
        service: TranscriptionService,
        *,
        splitter: Splitter = split_audio,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._service = service
        self._splitter = splitter
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logger or _logger

    def __call__(
        self,
        content: RequestContent,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> str:
        stem, suffix = split_name(name)
        segments = self._splitter(content, suffix)  # type: ignore[arg-type]
        if not segments:
            raise EmptyConversionError(f"No audio track found in {name}")

        self._logger.info(
            "Split media for transcription",
            extra={"item": name, "segment_count": len(segments)},
        )
        transcripts = [
            self._service.transcribe(
                segment,
                filename=f"{stem}_segment_{index:02d}.mp3",
                credential=credential,
            )
            for index, segment in enumerate(segments)
        ]
        text = "\n\n".join(part for part in transcripts if part)
        if not text:
            raise EmptyConversionError(f"Transcription of {name} was empty")

        body = f"# {stem}\n\n## Transcript\n\n{text}"
        if not options.include_meta:
            return body + "\n"
        return render_document(
            {
                "title": stem,
                "source": name,
                "segments": len(segments),
                "converted_at": self._clock(),
            },
            body,
        )
