from __future__ import annotations

import pytest

from markpack.batch import categories
from markpack.batch.errors import ValidationError
from markpack.batch.models import Category, ItemKind


@pytest.mark.parametrize(
    ("extension", "expected"),
    [
        ("pdf", Category.DOCUMENTS),
        ("DOCX", Category.DOCUMENTS),
        (".md", Category.DOCUMENTS),
        ("pptx", Category.DOCUMENTS),
        ("csv", Category.DATA),
        ("yml", Category.DATA),
        ("xlsx", Category.DATA),
        ("mp3", Category.MULTIMEDIA),
        ("mkv", Category.MULTIMEDIA),
        ("html", Category.WEB),
        ("xml", Category.WEB),
        ("exe", Category.OTHER),
        ("", Category.OTHER),
        (None, Category.OTHER),
    ],
)
def test_classify_file_extensions(extension, expected):
    assert categories.classify(ItemKind.FILE, extension) is expected


@pytest.mark.parametrize("kind", ["url", "parent-url", "video-link"])
def test_classify_remote_kinds_are_web_regardless_of_extension(kind):
    assert categories.classify(kind, "pdf") is Category.WEB


def test_classify_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        categories.classify("ftp", "pdf")


def test_only_multimedia_requires_a_credential():
    required = {
        category
        for category in Category
        if categories.requires_credential(category)
    }
    assert required == {Category.MULTIMEDIA}


def test_extension_of_lowercases_and_strips_dot():
    assert categories.extension_of("Report.Final.PDF") == "pdf"
    assert categories.extension_of("README") == ""


def test_media_extensions_cover_audio_and_video():
    media = categories.media_extensions()
    assert {"mp3", "wav", "mp4", "webm"} <= media
    assert "pdf" not in media
