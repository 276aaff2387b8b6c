"""Tests for text helpers, JSON extraction and the directory document provider."""

from __future__ import annotations

from pathlib import Path

import pytest

from deckweaver.documents import DirectoryDocumentProvider, document_id
from deckweaver.utils.json_extract import extract_json_text, parse_json_object
from deckweaver.utils.text import (
    INSUFFICIENT_SOURCE,
    SOURCE_NOT_FOUND,
    count_words,
    estimate_tokens,
    grounding_markers,
    missing_data_points,
    unique_name,
)


def test_count_words() -> None:
    assert count_words("") == 0
    assert count_words("  \n ") == 0
    assert count_words("## Heading\n\nOne two\tthree") == 5


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2


def test_missing_data_points_ignores_case_and_emphasis() -> None:
    content = "Revenue **grew 12%** in Q3,\nwhile costs fell."
    assert missing_data_points(content, ["revenue grew 12%", "costs fell", "margin 4%"]) == ["margin 4%"]


def test_grounding_markers() -> None:
    assert grounding_markers("plain text") == []
    text = f"one {SOURCE_NOT_FOUND} two {INSUFFICIENT_SOURCE}"
    assert grounding_markers(text) == [SOURCE_NOT_FOUND, INSUFFICIENT_SOURCE]


def test_unique_name() -> None:
    assert unique_name("Costs", []) == "Costs"
    assert unique_name("Costs", ["Costs"]) == "Costs (2)"
    assert unique_name("Costs", ["Costs", "Costs (2)"]) == "Costs (3)"


def test_extract_json_text() -> None:
    """It should strip fences and surrounding prose but keep bare arrays whole."""

    assert extract_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_json_text('Sure! {"a": {"b": 2}} Done.') == '{"a": {"b": 2}}'
    assert extract_json_text('[{"a": 1}, {"b": 2}]') == '[{"a": 1}, {"b": 2}]'
    assert extract_json_text('Here it is:\n```json\n{"a": 1}\n```') == '{"a": 1}'


def test_parse_json_object_errors() -> None:
    assert parse_json_object('```\n{"status": "ok"}\n```') == {"status": "ok"}
    assert parse_json_object('{"content": "use ```x``` here"}') == {"content": "use ```x``` here"}
    assert parse_json_object('```json\n{"content": "use ```x``` here"}\n```') == {"content": "use ```x``` here"}
    with pytest.raises(ValueError):
        parse_json_object("")
    with pytest.raises(ValueError):
        parse_json_object('{"status": ')


def test_directory_documents(tmp_path: Path) -> None:
    """It should read text files in name order, skip empty ones and keep ids unique."""

    (tmp_path / "Q3 Report.md").write_text("# Q3\nRevenue grew.", encoding="utf-8")
    (tmp_path / "q3-report.txt").write_text("Costs fell.", encoding="utf-8")
    (tmp_path / "empty.md").write_text("   \n", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    docs = DirectoryDocumentProvider(tmp_path).list_documents()

    assert [d.name for d in docs] == ["Q3 Report.md", "q3-report.txt"]
    assert [d.id for d in docs] == ["q3-report", "q3-report-2"]
    assert docs[0].word_count == 4
    assert document_id(Path("!!!.md")) == "doc"

    with pytest.raises(FileNotFoundError):
        DirectoryDocumentProvider(tmp_path / "missing").list_documents()
