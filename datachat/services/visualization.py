"""Chart and table suggestions derived from an answer by follow-up agent calls.

The model's JSON is validated and two known defects are repaired: CSS
variable colors in the unsupported var(--color-X) form, and configs given as
flat key -> color maps instead of key -> {label, color} records.
"""

import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

RunAgent = Callable[[str], Awaitable[str]]

CHART_TYPES = ("line", "bar", "area", "pie", "radial")
PALETTE = tuple(f"hsl(var(--chart-{n}))" for n in range(1, 6))

CHART_NEGATIVE_PHRASES = ("not suitable", "cannot be visualized", "i'm sorry", "i don't know")
TABLE_NEGATIVE_PHRASES = ("not suitable", "cannot be displayed", "i'm sorry", "i don't know")

GRAPH_SUGGESTION_PROMPT = """Given the following data and the original user question, decide how best to visualize it.
Choose the chart type that fits the data:

1. Time series or trend data: LINE chart
2. Comparing values across categories: BAR chart
3. Part-to-whole relationships: PIE chart
4. A single metric against a goal: RADIAL chart
5. Cumulative values over time: AREA chart

Original user question: "{question}"

Return a complete configuration as JSON, with this structure:

LINE: {{"type": "line", "componentConfig": {{"data": [...], "config": {{"<key>": {{"label": "...", "color": "hsl(var(--chart-1))"}}}}, "title": "...", "description": "...", "xAxisKey": "<x key>", "lineKeys": ["<key>", ...], "footerText": "...", "trendText": "..."}}}}
BAR: {{"type": "bar", "componentConfig": {{"data": [...], "config": {{...}}, "title": "...", "description": "...", "xAxisKey": "<category key>", "barKeys": ["<key>", ...], "footerText": "...", "trendText": "..."}}}}
AREA: {{"type": "area", "componentConfig": {{"data": [...], "config": {{...}}, "title": "...", "description": "...", "xAxisKey": "<x key>", "areaKey": "<value key>", "footerText": "...", "trendText": "..."}}}}
PIE: {{"type": "pie", "componentConfig": {{"data": [{{"name": "...", "value": 0}}, ...], "config": {{"<segment name>": {{"label": "...", "color": "..."}}}}, "title": "...", "description": "...", "dataKey": "value", "nameKey": "name", "footerText": "...", "trendText": "..."}}}}
RADIAL: {{"type": "radial", "componentConfig": {{"data": [...numeric values...], "config": {{...}}, "title": "...", "description": "...", "labelText": "<label for the central value>", "footerText": "...", "trendText": "..."}}}}

Here is the data to analyze:
{data}

If the data is not suitable for visualization, return null.

IMPORTANT:
- Pie chart data items must have 'name' and 'value' properties.
- For line, area and bar charts the xAxisKey must exist in every data point.
- For pie charts, include a config entry for every segment, keyed by segment name.
- Use colors "hsl(var(--chart-1))" through "hsl(var(--chart-5))". Never use "var(--color-X)".
- Respond with the JSON only."""

TABLE_SUGGESTION_PROMPT = """Given the following data and the original user question, decide whether the data should be displayed as a table.

Original user question: "{question}"

If it should, return a table configuration as JSON with this structure:
{{"type": "table", "componentConfig": {{"data": [{{...one object per row...}}], "columns": [{{"key": "<property>", "header": "<header text>", "isNumeric": false}}], "caption": "...", "footerData": {{"label": "Total", "value": "...", "colSpan": 1}}, "title": "...", "config": {{"<column key>": {{"label": "...", "color": "hsl(var(--chart-1))"}}}}}}}}

Here is the data to analyze:
{data}

If the data is not suitable for a table display, return null.

IMPORTANT:
- Every column 'key' must match a property of the data objects.
- Set 'isNumeric' to true for numeric columns.
- Only include footerData when there is a meaningful summary value (a sum or an average).
- Use colors "hsl(var(--chart-1))" through "hsl(var(--chart-5))".
- Respond with the JSON only."""

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?|\r?\n?```", re.IGNORECASE)
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def palette_color(index: int) -> str:
    return PALETTE[index % len(PALETTE)]


def strip_json_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def is_negative_response(text: str, phrases: tuple[str, ...]) -> bool:
    lowered = (text or "").strip().lower()
    if lowered in ("null", "none", ""):
        return True
    return any(p in lowered for p in phrases)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_usable_color(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip()) and not value.strip().startswith("var(--color-")


def parse_suggestion(text: str, phrases: tuple[str, ...]) -> Optional[dict[str, Any]]:
    """Decode the model's JSON suggestion; None for refusals or malformed output."""
    cleaned = strip_json_fences(text)
    if not cleaned.startswith("{") and is_negative_response(cleaned, phrases):
        return None
    for candidate in (cleaned, *_JSON_OBJECT_RE.findall(cleaned)[:1]):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    logger.warning("VIZ | could not parse suggestion: %s", cleaned[:200])
    return None


def _validated_component(result: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not result or not result.get("type") or not isinstance(result.get("componentConfig"), dict):
        return None
    component = result["componentConfig"]
    data = component.get("data")
    if not isinstance(data, list) or not data:
        logger.info("VIZ | suggestion has no data rows")
        return None
    return component


def normalize_config(config: dict[str, Any]) -> dict[str, Any]:
    """Reshape a config into key -> {label, color} with usable colors.

    Flat string entries become records labelled with their key. Colors that
    are missing or in var(--color-X) form get the palette color for the
    entry's position.
    """
    normalized: dict[str, Any] = {}
    for index, (key, value) in enumerate(config.items()):
        if isinstance(value, dict):
            entry = dict(value)
            entry.setdefault("label", key)
        else:
            entry = {"label": key, "color": value}
        if not _is_usable_color(entry.get("color")):
            entry["color"] = palette_color(index)
        normalized[key] = entry
    return normalized


def default_chart_config(chart_type: str, component: dict[str, Any]) -> dict[str, Any]:
    """Config for a chart that came back without one."""
    config: dict[str, Any] = {}
    data = component["data"]
    if chart_type == "pie":
        name_key = component.get("nameKey") or "name"
        for item in data:
            if not isinstance(item, dict):
                continue
            name = item.get(name_key)
            if name and str(name) not in config:
                config[str(name)] = {"label": str(name), "color": palette_color(len(config))}
        return config

    sample = data[0] if isinstance(data[0], dict) else {}
    x_key = component.get("xAxisKey")
    for key, value in sample.items():
        if key in (x_key, "name") or not _is_number(value):
            continue
        config[key] = {"label": key, "color": palette_color(len(config))}
    return config


def repair_chart(result: dict[str, Any]) -> Optional[dict[str, Any]]:
    component = _validated_component(result)
    if component is None:
        return None
    chart_type = str(result["type"]).strip().lower()
    if chart_type not in CHART_TYPES:
        logger.info("VIZ | unsupported chart type %r", result["type"])
        return None
    result["type"] = chart_type

    config = component.get("config")
    if isinstance(config, dict) and config:
        component["config"] = normalize_config(config)
    else:
        component["config"] = default_chart_config(chart_type, component)
    return result


def humanize_header(key: str) -> str:
    text = _CAMEL_RE.sub(" ", str(key)).replace("_", " ")
    text = " ".join(text.split())
    return text[:1].upper() + text[1:]


def derive_columns(row: Any) -> Optional[list[dict[str, Any]]]:
    if not isinstance(row, dict) or not row:
        return None
    return [
        {"key": key, "header": humanize_header(key), "isNumeric": _is_number(value)}
        for key, value in row.items()
    ]


def repair_table(result: dict[str, Any]) -> Optional[dict[str, Any]]:
    component = _validated_component(result)
    if component is None:
        return None

    columns = component.get("columns")
    if not isinstance(columns, list) or not columns:
        columns = derive_columns(component["data"][0])
        if columns is None:
            return None
        component["columns"] = columns

    config = component.get("config")
    if isinstance(config, dict) and config:
        component["config"] = normalize_config(config)
    else:
        component["config"] = {
            col.get("key"): {"label": col.get("header") or col.get("key"), "color": palette_color(i)}
            for i, col in enumerate(columns)
            if isinstance(col, dict) and col.get("key")
        }
    return result


async def suggest_graph_type(run_agent: RunAgent, data: str, question: str) -> Optional[dict[str, Any]]:
    """Chart configuration for the answer, or None when it should not be charted."""
    prompt = GRAPH_SUGGESTION_PROMPT.format(question=question, data=data)
    try:
        raw = await run_agent(prompt)
    except Exception as e:
        logger.error("VIZ | chart suggestion call failed: %s", e)
        return None
    result = parse_suggestion(raw, CHART_NEGATIVE_PHRASES)
    if result is None:
        return None
    return repair_chart(result)


async def suggest_table_data(run_agent: RunAgent, data: str, question: str) -> Optional[dict[str, Any]]:
    """Table configuration for the answer, or None when a table does not fit."""
    prompt = TABLE_SUGGESTION_PROMPT.format(question=question, data=data)
    try:
        raw = await run_agent(prompt)
    except Exception as e:
        logger.error("VIZ | table suggestion call failed: %s", e)
        return None
    result = parse_suggestion(raw, TABLE_NEGATIVE_PHRASES)
    if result is None:
        return None
    return repair_table(result)
