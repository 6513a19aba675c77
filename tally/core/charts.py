"""Chart-spec extraction from agent output.

The agent is asked to end its answer with a fenced ```chart block holding a
JSON chart description. ``extract_chart`` separates that block from the
narrative and validates it. Anything malformed degrades to narrative-only
output; nothing here raises into the response stream.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from tally.core.constants import CHART_REQUIRED_CONFIG, ChartType

logger = logging.getLogger(__name__)

CHART_BLOCK_RE = re.compile(r"```chart\s*(.*?)```", re.DOTALL)


class ChartValidationError(ValueError):
    """Raised by validate_chart for a spec the renderer cannot draw."""


@dataclass
class ChartSpec:
    type: str
    title: str
    data: list[dict[str, Any]]
    config: dict[str, Any] = field(default_factory=dict)
    description: str | None = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "data": self.data,
            "config": self.config,
        }
        if self.description:
            out["description"] = self.description
        return out


@dataclass
class ChartExtraction:
    narrative: str
    chart: ChartSpec | None = None


def validate_chart(raw: Any) -> ChartSpec:
    """Turn a parsed JSON object into a ChartSpec or raise ChartValidationError."""
    if not isinstance(raw, dict):
        raise ChartValidationError("chart payload must be an object")

    chart_type = raw.get("type")
    if chart_type not in ChartType.ALL:
        raise ChartValidationError(
            f"unsupported chart type: {chart_type!r}. Must be one of: {', '.join(sorted(ChartType.ALL))}"
        )

    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ChartValidationError("chart title is required")

    data = raw.get("data")
    if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
        raise ChartValidationError("chart data must be a list of row objects")

    config = raw.get("config") or {}
    if not isinstance(config, dict):
        raise ChartValidationError("chart config must be an object")
    missing = [key for key in CHART_REQUIRED_CONFIG[chart_type] if config.get(key) in (None, "", [])]
    if missing:
        raise ChartValidationError(f"{chart_type} chart config missing: {', '.join(missing)}")
    if chart_type == ChartType.TABLE and not isinstance(config["columns"], list):
        raise ChartValidationError("table chart columns must be a list")

    description = raw.get("description")
    return ChartSpec(
        type=chart_type,
        title=title,
        data=data,
        config=config,
        description=description if isinstance(description, str) else None,
    )


def extract_chart(text: str | None) -> ChartExtraction:
    """Split agent output into narrative text and an optional chart.

    On success the fenced block is removed from the narrative. If there is no
    block, or it fails to parse or validate, the text comes back unchanged.
    Works on accumulated stream text too: an unterminated block is no block.
    """
    text = text or ""
    match = CHART_BLOCK_RE.search(text)
    if not match:
        return ChartExtraction(narrative=text)

    try:
        chart = validate_chart(json.loads(match.group(1).strip()))
    except (json.JSONDecodeError, ChartValidationError) as e:
        logger.info("Discarding chart block: %s", e)
        return ChartExtraction(narrative=text)

    narrative = (text[:match.start()] + text[match.end():]).strip()
    return ChartExtraction(narrative=narrative, chart=chart)
