"""Prompt helpers shared by the generation, repair and judge calls."""

from __future__ import annotations

import json
from typing import Any

from coursegen.ai.pipeline.contracts import GenerationRequest, QualityIssue, ValidationIssue

JsonDict = dict[str, Any]

_MAX_FEEDBACK_ITEMS = 12


def _format_issue_list(lines: list[str]) -> str:
  """Format issues as a bullet list, capped so prompts stay bounded."""
  if not lines:
    return "- (none)"
  shown = lines[:_MAX_FEEDBACK_ITEMS]
  rendered = "\n".join(f"- {line}" for line in shown)
  if len(lines) > len(shown):
    rendered += f"\n- ... and {len(lines) - len(shown)} more"
  return rendered


def render_generation_prompt(prompt_text: str, feedback: list[str] | None = None) -> str:
  """Append the previous attempt's problems so the retry avoids repeating them."""
  if not feedback:
    return prompt_text

  suffix = "\n\n".join(
    [
      "The previous response was rejected for these reasons:",
      _format_issue_list(feedback),
      "Return ONLY valid JSON and ensure the schema is followed exactly.",
    ]
  )
  return f"{prompt_text}\n\n{suffix}"


def render_repair_prompt(*, schema: JsonDict, candidate_text: str, issues: list[ValidationIssue]) -> str:
  """Ask the model to fix a malformed candidate given the explicit validation issues."""
  schema_str = json.dumps(schema, ensure_ascii=True, sort_keys=True)
  return "\n\n".join(
    [
      "You repair JSON documents so they satisfy a JSON Schema.",
      "Fix ONLY the problems listed below. Keep every other value exactly as it is.",
      f"Validation issues:\n{_format_issue_list([issue.render() for issue in issues])}",
      f"JSON Schema:\n{schema_str}",
      f"Document to repair:\n{candidate_text}",
      "Output the corrected JSON document only, with no commentary and no code fences.",
    ]
  )


def render_judge_prompt(*, content: JsonDict, request: GenerationRequest, issues: list[QualityIssue]) -> str:
  """Frame a judge review with the cheap filter's findings as priming context."""
  content_str = json.dumps(content, ensure_ascii=False, indent=2)
  keywords = ", ".join(request.required_keywords) if request.required_keywords else "-"
  findings = _format_issue_list([f"[{issue.phase}/{issue.code}] {issue.description}" for issue in issues])
  return "\n\n".join(
    [
      "You are reviewing generated course content before it is published.",
      f"Topic: {request.topic or '-'}\nLanguage: {request.language}\nRequired keywords: {keywords}",
      f"Original request:\n{request.prompt}",
      f"Automated checks flagged:\n{findings}",
      f"Content:\n{content_str}",
      'Decide whether the content is accurate, coherent and on topic. Respond with JSON only: {"accepted": true|false, "score": 0.0-1.0, "reasoning": "..."}',
    ]
  )
