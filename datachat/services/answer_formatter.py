"""Post-processing of the agent's final answer."""

import json
import re
from typing import Any, Optional

MAX_SENTENCES = 3

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+\s+")


def normalize_answer(output: str) -> str:
    """Unescape the model output and keep the first paragraph, at most three sentences."""
    cleaned = (output or "").replace("\\n", "\n").replace('\\"', '"')
    paragraphs = [p.strip() for p in cleaned.split("\n\n") if p.strip()]
    if not paragraphs:
        return cleaned.strip()
    first = paragraphs[0]
    breaks = list(_SENTENCE_SPLIT_RE.finditer(first))
    if len(breaks) >= MAX_SENTENCES:
        # cut after the third terminator, keeping it as written
        first = first[: breaks[MAX_SENTENCES - 1].end()].rstrip()
    return first


def extract_sql_query(intermediate_steps: list[dict[str, Any]]) -> Optional[str]:
    """SQL from the most recent tool observation that carries a sqlQuery field."""
    for step in reversed(intermediate_steps or []):
        observation = step.get("observation")
        if not isinstance(observation, str):
            continue
        try:
            payload = json.loads(observation)
        except ValueError:
            continue
        if isinstance(payload, dict) and isinstance(payload.get("sqlQuery"), str):
            return payload["sqlQuery"]
    return None


def latest_observation(intermediate_steps: list[dict[str, Any]]) -> Optional[str]:
    for step in reversed(intermediate_steps or []):
        observation = step.get("observation")
        if isinstance(observation, str) and observation.strip():
            return observation
    return None
