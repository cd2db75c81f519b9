"""Annotation layer for clinical images.

Shapes are stored the way the imaging API persists them: an annotation type,
an opaque geometry mapping produced by the drawing surface, a stroke/fill
style, and optional text. Every edit records a JSON snapshot of the whole
layer so edits can be undone and redone.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .history import DEFAULT_MAX_HISTORY, SnapshotHistory

logger = logging.getLogger(__name__)


class AnnotationType(str, Enum):
    FREEHAND = "FREEHAND"
    LINE = "LINE"
    ARROW = "ARROW"
    CIRCLE = "CIRCLE"
    RECTANGLE = "RECTANGLE"
    TEXT = "TEXT"
    POLYGON = "POLYGON"


@dataclass(frozen=True)
class AnnotationStyle:
    stroke_color: str = "#ef4444"
    stroke_width: float = 2.0
    fill_color: str = "#ef4444"
    fill_opacity: float = 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AnnotationStyle":
        default = cls()
        return cls(
            stroke_color=str(payload.get("strokeColor") or default.stroke_color),
            stroke_width=float(payload.get("strokeWidth") or default.stroke_width),
            fill_color=str(payload.get("fillColor") or default.fill_color),
            fill_opacity=float(payload.get("fillOpacity") or 0.0),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "strokeColor": self.stroke_color,
            "strokeWidth": self.stroke_width,
            "fillColor": self.fill_color,
            "fillOpacity": self.fill_opacity,
        }


@dataclass(frozen=True)
class Annotation:
    id: str
    annotation_type: AnnotationType
    geometry: Dict[str, Any] = field(default_factory=dict)
    style: AnnotationStyle = field(default_factory=AnnotationStyle)
    text: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Annotation":
        return cls(
            id=str(payload.get("id") or uuid.uuid4()),
            annotation_type=AnnotationType(str(payload["type"]).upper()),
            geometry=dict(payload.get("geometry") or {}),
            style=AnnotationStyle.from_payload(payload.get("style") or {}),
            text=payload.get("text"),
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.annotation_type.value,
            "geometry": dict(self.geometry),
            "style": self.style.to_payload(),
        }
        if self.text is not None:
            payload["text"] = self.text
        return payload


def _validate(annotation_type: AnnotationType, geometry: Any, text: Optional[str]) -> None:
    if not isinstance(geometry, Mapping):
        raise TypeError("geometry must be a mapping")
    if annotation_type is AnnotationType.TEXT and not (text and text.strip()):
        raise ValueError("Text annotations require non-empty text")


class AnnotationLayer:
    """Editable set of annotations with snapshot-based undo/redo."""

    def __init__(
        self,
        annotations: Iterable[Annotation] = (),
        *,
        max_history: int = DEFAULT_MAX_HISTORY,
        on_change: Optional[Callable[[List[Annotation]], None]] = None,
    ) -> None:
        self._annotations: Dict[str, Annotation] = {item.id: item for item in annotations}
        self._history = SnapshotHistory(max_history)
        self._on_change = on_change
        self._history.push(self.to_json())

    @property
    def annotations(self) -> List[Annotation]:
        return list(self._annotations.values())

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    def get(self, annotation_id: str) -> Annotation:
        try:
            return self._annotations[annotation_id]
        except KeyError as exc:
            raise KeyError(f"Unknown annotation '{annotation_id}'") from exc

    def add(
        self,
        annotation_type: AnnotationType | str,
        geometry: Mapping[str, Any],
        *,
        style: Optional[AnnotationStyle] = None,
        text: Optional[str] = None,
    ) -> Annotation:
        annotation_type = AnnotationType(annotation_type)
        _validate(annotation_type, geometry, text)
        annotation = Annotation(
            id=str(uuid.uuid4()),
            annotation_type=annotation_type,
            geometry=dict(geometry),
            style=style or AnnotationStyle(),
            text=text,
        )
        self._annotations[annotation.id] = annotation
        self._record()
        return annotation

    def update(
        self,
        annotation_id: str,
        *,
        geometry: Optional[Mapping[str, Any]] = None,
        style: Optional[AnnotationStyle] = None,
        text: Optional[str] = None,
    ) -> Annotation:
        current = self.get(annotation_id)
        updated = Annotation(
            id=current.id,
            annotation_type=current.annotation_type,
            geometry=dict(geometry) if geometry is not None else current.geometry,
            style=style or current.style,
            text=text if text is not None else current.text,
        )
        _validate(updated.annotation_type, updated.geometry, updated.text)
        self._annotations[annotation_id] = updated
        self._record()
        return updated

    def remove(self, annotation_id: str) -> None:
        self.get(annotation_id)
        del self._annotations[annotation_id]
        self._record()

    def clear(self) -> None:
        if not self._annotations:
            return
        self._annotations.clear()
        self._record()

    def undo(self) -> bool:
        snapshot = self._history.undo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def redo(self) -> bool:
        snapshot = self._history.redo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def to_json(self) -> str:
        return json.dumps([item.to_payload() for item in self._annotations.values()], sort_keys=True)

    def load_json(self, raw: str) -> None:
        """Replace the layer's contents and start a fresh history."""

        self._annotations = self._parse(raw)
        self._history.clear()
        self._history.push(self.to_json())
        self._emit()

    @staticmethod
    def _parse(raw: str) -> Dict[str, Annotation]:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid annotation data: {exc.msg}") from exc
        if not isinstance(payload, list):
            raise ValueError("Annotation data must be a JSON list")
        annotations: Dict[str, Annotation] = {}
        for entry in payload:
            if not isinstance(entry, Mapping):
                raise ValueError("Each annotation must be a JSON object")
            annotation = Annotation.from_payload(entry)
            annotations[annotation.id] = annotation
        return annotations

    def _record(self) -> None:
        self._history.push(self.to_json())
        self._emit()

    def _restore(self, snapshot: str) -> None:
        self._annotations = self._parse(snapshot)
        self._emit()

    def _emit(self) -> None:
        logger.debug("Annotation layer now holds %d shape(s)", len(self._annotations))
        if self._on_change is not None:
            self._on_change(self.annotations)


__all__ = ["Annotation", "AnnotationLayer", "AnnotationStyle", "AnnotationType"]
