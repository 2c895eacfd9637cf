"""Tesseract TSV output turned into on-screen text items with tap points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from DevProbe.errors import NormalizationError
from DevProbe.execution.plan import RawResult
from DevProbe.parsers.common import complete_lines

_HEADER = (
    "level", "page_num", "block_num", "par_num", "line_num", "word_num",
    "left", "top", "width", "height", "conf", "text",
)
_WORD_LEVEL = "5"
VISIBLE_TEXT_LIMIT = 15


@dataclass
class TextItem:
    text: str
    left: float
    top: float
    right: float
    bottom: float
    confidence: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def to_dict(self, scale: float) -> dict[str, Any]:
        """Coordinates in device points (screenshot pixels divided by ``scale``)."""
        return {
            "text": self.text,
            "x": round((self.left + self.width / 2) / scale),
            "y": round((self.top + self.height / 2) / scale),
            "width": round(self.width / scale),
            "height": round(self.height / scale),
            "bounds": {
                "left": round(self.left / scale),
                "top": round(self.top / scale),
                "right": round(self.right / scale),
                "bottom": round(self.bottom / scale),
            },
            "confidence": round(self.confidence, 3),
        }


def parse_tsv(lines: list[str]) -> list[TextItem]:
    """Group recognized words by OCR line, ordered top-to-bottom then left-to-right."""
    if not lines:
        return []
    header = tuple(lines[0].split("\t"))
    if header != _HEADER:
        raise NormalizationError("OCR output is not tesseract TSV (unexpected header)")

    grouped: dict[tuple[str, str, str, str], list[tuple[str, float, float, float, float, float]]] = {}
    for number, line in enumerate(lines[1:], start=2):
        cells = line.split("\t")
        if len(cells) < len(_HEADER) - 1:
            raise NormalizationError(f"OCR row {number} has {len(cells)} columns")
        if cells[0] != _WORD_LEVEL:
            continue
        text = cells[11].strip() if len(cells) > 11 else ""
        if not text:
            continue
        try:
            left, top, width, height = (float(v) for v in cells[6:10])
            conf = float(cells[10])
        except ValueError as exc:
            raise NormalizationError(f"OCR row {number} has non-numeric geometry") from exc
        key = (cells[1], cells[2], cells[3], cells[4])
        grouped.setdefault(key, []).append((text, left, top, left + width, top + height, conf))

    items = []
    for words in grouped.values():
        confidences = [w[5] for w in words if w[5] >= 0]
        items.append(
            TextItem(
                text=" ".join(w[0] for w in words),
                left=min(w[1] for w in words),
                top=min(w[2] for w in words),
                right=max(w[3] for w in words),
                bottom=max(w[4] for w in words),
                confidence=(sum(confidences) / len(confidences) / 100.0) if confidences else 0.0,
            )
        )
    items.sort(key=lambda item: (item.top, item.left))
    return items


def _recognize(raw: RawResult) -> tuple[list[TextItem], bool]:
    lines, truncated = complete_lines(raw)
    return parse_tsv([line for line in lines if line.strip()]), truncated


def _scale(args: dict[str, Any]) -> float:
    return float(args.get("scale") or 1.0)


def normalize_ui_state(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    """Screen text with tap coordinates. A cut-off TSV keeps every complete row."""
    items, truncated = _recognize(raw)
    scale = _scale(args)
    return {
        "device": args.get("device", "booted"),
        "screenshot_path": raw.extra.get("screenshot_path", ""),
        "text_items": [item.to_dict(scale) for item in items],
        "count": len(items),
        "truncated": truncated,
    }


def find_match(items: list[TextItem], query: str, case_sensitive: bool) -> TextItem | None:
    """Exact match wins, then the highest-confidence partial match."""
    needle = query if case_sensitive else query.lower()

    def norm(text: str) -> str:
        return text if case_sensitive else text.lower()

    exact = [item for item in items if norm(item.text) == needle]
    if exact:
        return max(exact, key=lambda item: item.confidence)
    partial = [item for item in items if needle in norm(item.text)]
    if partial:
        return max(partial, key=lambda item: (item.confidence, -len(item.text)))
    return None


def normalize_find_text(raw: RawResult, args: dict[str, Any]) -> dict[str, Any]:
    items, truncated = _recognize(raw)
    scale = _scale(args)
    match = find_match(items, args["text"], bool(args.get("case_sensitive", False)))
    result: dict[str, Any] = {
        "query": args["text"],
        "screenshot_path": raw.extra.get("screenshot_path", ""),
        "truncated": truncated,
    }
    if match is None:
        result["found"] = False
        result["visible_texts"] = [item.text for item in items[:VISIBLE_TEXT_LIMIT]]
        result["more_texts"] = max(len(items) - VISIBLE_TEXT_LIMIT, 0)
        return result
    result["found"] = True
    result.update(match.to_dict(scale))
    return result
