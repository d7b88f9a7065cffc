"""Cheap text heuristics used by the quality gate's first stage."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

# Scripts we track for pollution; anything else (Greek math symbols, punctuation) is ignored.
_TRACKED_SCRIPTS: tuple[str, ...] = ("LATIN", "CYRILLIC", "CJK", "HIRAGANA", "KATAKANA", "HANGUL", "ARABIC", "HEBREW", "THAI", "DEVANAGARI")

_LANGUAGE_SCRIPTS: dict[str, frozenset[str]] = {
  "en": frozenset({"LATIN"}),
  "es": frozenset({"LATIN"}),
  "fr": frozenset({"LATIN"}),
  "de": frozenset({"LATIN"}),
  "it": frozenset({"LATIN"}),
  "pt": frozenset({"LATIN"}),
  "nl": frozenset({"LATIN"}),
  "pl": frozenset({"LATIN"}),
  "ru": frozenset({"CYRILLIC", "LATIN"}),
  "uk": frozenset({"CYRILLIC", "LATIN"}),
  "zh": frozenset({"CJK", "LATIN"}),
  "ja": frozenset({"CJK", "HIRAGANA", "KATAKANA", "LATIN"}),
  "ko": frozenset({"HANGUL", "CJK", "LATIN"}),
  "ar": frozenset({"ARABIC", "LATIN"}),
  "he": frozenset({"HEBREW", "LATIN"}),
  "hi": frozenset({"DEVANAGARI", "LATIN"}),
  "th": frozenset({"THAI", "LATIN"}),
}

INVISIBLE_CHARS = frozenset({"\u200b", "\u200c", "\u200d", "\u2060", "\ufeff", "\ufffd"})

FILLER_PHRASES: tuple[str, ...] = (
  "as an ai language model",
  "as an ai model",
  "it is important to note that",
  "it's important to note that",
  "it is worth noting that",
  "it's worth noting that",
  "needless to say",
  "in today's fast-paced world",
  "i hope this helps",
)

_FILLER_RE = re.compile(r"(?i)\b(?:" + "|".join(re.escape(phrase) for phrase in FILLER_PHRASES) + r")\b[,.!]?\s*(?P<next>\w)?")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_COPULA_RE = re.compile(r"^(?P<subject>[\w\s'-]{2,60}?)\s+is\s+(?P<negated>not\s+)?(?P<object>[\w\s'-]{1,80}?)[.!?]?$", re.IGNORECASE)
_TERMINAL_CHARS = ".!?:;)]\"'”»`*"
_DANGLING_WORDS = frozenset({"and", "or", "but", "the", "a", "an", "of", "to", "with", "because", "which", "that", "for", "in"})
_MIN_WORDS_FOR_ENDING_CHECK = 8
_EMPHASIS_MARKERS: tuple[str, ...] = ("**", "__")


def script_of(char: str) -> str | None:
  """Return the tracked script a letter belongs to, or None."""
  if not char.isalpha():
    return None
  name = unicodedata.name(char, "")
  for script in _TRACKED_SCRIPTS:
    if name.startswith(script):
      return script
  return None


def foreign_chars(text: str, language: str) -> list[str]:
  """Return letters from tracked scripts that the content language does not use."""
  allowed = _LANGUAGE_SCRIPTS.get(language.split("-")[0].lower())
  if allowed is None:
    return []
  return [char for char in text if (script := script_of(char)) is not None and script not in allowed]


def strip_foreign_chars(text: str, language: str) -> str:
  offenders = set(foreign_chars(text, language))
  if not offenders:
    return text
  return "".join(char for char in text if char not in offenders)


def truncation_signals(text: str) -> list[str]:
  """Detect signs that a prose field was cut off mid-thought."""
  signals: list[str] = []
  stripped = text.rstrip()
  if not stripped:
    return signals

  if stripped.endswith("...") or stripped.endswith("…"):
    signals.append("trailing ellipsis")

  words = stripped.split()
  if len(words) >= _MIN_WORDS_FOR_ENDING_CHECK:
    if stripped[-1] not in _TERMINAL_CHARS and not stripped.endswith("…"):
      signals.append("missing terminal punctuation")
    last_word = re.sub(r"\W+$", "", words[-1]).lower()
    if last_word in _DANGLING_WORDS:
      signals.append(f"dangling connector '{last_word}'")

  if stripped.count("(") > stripped.count(")") or stripped.count("[") > stripped.count("]"):
    signals.append("unclosed bracket")
  return signals


def keyword_coverage(texts: Iterable[str], keywords: Iterable[str]) -> float:
  """Fraction of required keywords that appear anywhere in the texts."""
  wanted = [keyword.strip().casefold() for keyword in keywords if keyword.strip()]
  if not wanted:
    return 1.0
  corpus = "\n".join(texts).casefold()
  found = sum(1 for keyword in wanted if keyword in corpus)
  return found / len(wanted)


def find_contradictions(texts: Iterable[str]) -> list[str]:
  """Find statements asserted both as 'X is Y' and 'X is not Y'."""
  claims: dict[tuple[str, str], set[bool]] = {}
  for text in texts:
    for sentence in _SENTENCE_SPLIT_RE.split(text.strip()):
      match = _COPULA_RE.match(sentence.strip())
      if match is None:
        continue
      subject = " ".join(match.group("subject").lower().split())
      obj = " ".join(match.group("object").lower().split())
      claims.setdefault((subject, obj), set()).add(match.group("negated") is not None)

  return [f"'{subject} is {obj}' is both asserted and denied" for (subject, obj), polarity in claims.items() if len(polarity) == 2]


def remove_filler(text: str) -> str:
  """Delete filler phrases, re-capitalizing the next word when the filler opened a sentence."""

  def _replace(match: re.Match[str]) -> str:
    following = match.group("next") or ""
    preceding = text[: match.start()].rstrip()
    opens_sentence = not preceding or preceding[-1] in ".!?"
    return following.upper() if opens_sentence else following

  return _FILLER_RE.sub(_replace, text)


def remove_invisible(text: str) -> str:
  return "".join(char for char in text if char not in INVISIBLE_CHARS)


def fix_light_markup(text: str) -> str:
  """Balance bold markers and code fences that the model left open."""
  fixed = text
  for marker in _EMPHASIS_MARKERS:
    if fixed.count(marker) % 2 == 1:
      # Drop the last unmatched marker rather than guessing where emphasis ends.
      index = fixed.rfind(marker)
      fixed = fixed[:index] + fixed[index + len(marker) :]
  if fixed.count("```") % 2 == 1:
    fixed = fixed.rstrip() + "\n```"
  return fixed


def has_filler(text: str) -> bool:
  return _FILLER_RE.search(text) is not None


def has_invisible(text: str) -> bool:
  return any(char in INVISIBLE_CHARS for char in text)


def has_broken_markup(text: str) -> bool:
  return any(text.count(marker) % 2 == 1 for marker in _EMPHASIS_MARKERS) or text.count("```") % 2 == 1
