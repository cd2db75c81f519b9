"""Clinical imaging helpers."""

from .annotations import Annotation, AnnotationLayer, AnnotationStyle, AnnotationType
from .history import SnapshotHistory

__all__ = [
    "Annotation",
    "AnnotationLayer",
    "AnnotationStyle",
    "AnnotationType",
    "SnapshotHistory",
]
