from __future__ import annotations

import logging
import sys

from coursegen.config import get_settings
from coursegen.core import logging as core_logging
from coursegen.core.logging import TruncatedFormatter, _build_handlers, initialize_logging, rotated_log_name
from coursegen.telemetry.context import describe_call_context, generation_call_context, get_call_context


def test_rotated_log_name() -> None:
  assert rotated_log_name("/logs/coursegen.log.1") == "/logs/coursegen.log-1"
  assert rotated_log_name("/logs/coursegen.log") == "/logs/coursegen.log"


def test_handlers_write_under_log_dir(tmp_path, monkeypatch) -> None:
  monkeypatch.setenv("COURSEGEN_LOG_DIR", str(tmp_path / "logs"))
  get_settings.cache_clear()
  try:
    stream, file_handler, log_path = _build_handlers(get_settings())
  finally:
    get_settings.cache_clear()

  try:
    assert log_path.exists()
    assert log_path.parent == (tmp_path / "logs").resolve()
    assert log_path.name.startswith("coursegen_")
    assert isinstance(stream.formatter, TruncatedFormatter)
  finally:
    file_handler.close()


def test_initialize_logging_runs_once(tmp_path, monkeypatch) -> None:
  monkeypatch.setattr(core_logging, "_LOGGING_INITIALIZED", False)
  monkeypatch.setattr(core_logging, "_LOG_FILE_PATH", None)
  monkeypatch.setenv("COURSEGEN_LOG_DIR", str(tmp_path / "logs"))
  root = logging.getLogger()
  saved_handlers, saved_level = root.handlers[:], root.level
  get_settings.cache_clear()

  try:
    first = initialize_logging(get_settings())
    installed = root.handlers[:]
    second = initialize_logging(get_settings())

    assert second == first
    assert root.handlers == installed
    assert [path.resolve() for path in (tmp_path / "logs").glob("coursegen_*.log")] == [first]
  finally:
    for handler in root.handlers:
      handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    get_settings.cache_clear()


def test_truncated_formatter_shortens_tracebacks() -> None:
  def _fail() -> None:
    raise RuntimeError("deep failure")

  def _load() -> None:
    _fail()

  def _parse() -> None:
    _load()

  def _render() -> None:
    _parse()

  def _publish() -> None:
    _render()

  try:
    _publish()
  except RuntimeError:
    exc_info = sys.exc_info()

  formatted = TruncatedFormatter().formatException(exc_info)
  assert "    ...\n" in formatted
  assert "RuntimeError: deep failure" in formatted
  assert "_publish" not in formatted


def test_call_context_is_scoped() -> None:
  assert get_call_context() is None
  with generation_call_context(purpose="judge", topic="photosynthesis", attempt_index=2) as context:
    assert get_call_context() is context
    assert describe_call_context() == "purpose=judge topic=photosynthesis candidate=- attempt=2"
  assert get_call_context() is None
  assert describe_call_context().startswith("purpose=-")


def test_module_loggers_propagate_to_root() -> None:
  assert logging.getLogger("coursegen.ai.orchestrator").propagate
