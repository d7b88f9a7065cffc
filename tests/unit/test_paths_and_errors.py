from __future__ import annotations

import pytest

from coursegen.ai.errors import is_provider_error
from coursegen.ai.quality import heuristics
from coursegen.utils.paths import format_location, iter_matching, iter_strings, set_value_at_path, value_at_path

_PAYLOAD = {"sections": [{"body": "One."}, {"body": "Two."}], "title": "Cells"}


def test_format_location() -> None:
  assert format_location(()) == "$"
  assert format_location(("sections", 1, "body")) == "sections.1.body"


def test_value_and_set_at_path() -> None:
  payload = {"sections": [{"body": "One."}]}
  assert value_at_path(payload, ["sections", 0, "body"]) == "One."
  assert value_at_path(payload, ["sections", 3, "body"]) is None
  assert set_value_at_path(payload, ["sections", 0, "body"], "Uno.")
  assert payload["sections"][0]["body"] == "Uno."
  assert not set_value_at_path(payload, ["missing", "body"], "x")


def test_iter_matching_expands_lists() -> None:
  assert list(iter_matching(_PAYLOAD, "sections.*.body")) == [(("sections", 0, "body"), "One."), (("sections", 1, "body"), "Two.")]
  assert list(iter_matching(_PAYLOAD, "title")) == [(("title",), "Cells")]
  assert list(iter_matching(_PAYLOAD, "summary")) == []


def test_iter_strings_keeps_raw_keys() -> None:
  payload = {"terms": {"e.g.": "For example.", "7": "Seven."}, "count": 3}
  assert list(iter_strings(payload)) == [(("terms", "e.g."), "For example."), (("terms", "7"), "Seven.")]


@pytest.mark.parametrize(
  "exc",
  [TimeoutError(), ConnectionError("reset"), RuntimeError("Rate limit exceeded"), RuntimeError("503 Service Unavailable")],
)
def test_provider_errors(exc: BaseException) -> None:
  assert is_provider_error(exc)


def test_programming_errors_are_not_provider_errors() -> None:
  assert not is_provider_error(KeyError("title"))


def test_keyword_coverage_is_case_insensitive() -> None:
  assert heuristics.keyword_coverage(["Photosynthesis uses light."], ["photosynthesis", "Chlorophyll"]) == 0.5
  assert heuristics.keyword_coverage(["anything"], []) == 1.0


def test_greek_symbols_are_not_foreign() -> None:
  assert heuristics.foreign_chars("The angle θ equals π over two.", "en") == []
  assert heuristics.foreign_chars("Hello мир", "en") == ["м", "и", "р"]


def test_truncation_signals() -> None:
  assert heuristics.truncation_signals("A complete sentence about plants.") == []
  assert "unclosed bracket" in heuristics.truncation_signals("Plants (such as ferns")
  assert heuristics.truncation_signals("Plants convert light into chemical energy stored in the") == ["missing terminal punctuation", "dangling connector 'the'"]
