"""Nearest-reference face matching against a session roster."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from core.attendance.models import Label, RosterEntry

logger = logging.getLogger(__name__)

DistanceFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


def euclidean_distance(query: np.ndarray, references: np.ndarray) -> np.ndarray:
    return np.linalg.norm(references - query, axis=1)


def cosine_distance(query: np.ndarray, references: np.ndarray) -> np.ndarray:
    denom = np.linalg.norm(references, axis=1) * np.linalg.norm(query)
    denom = np.where(denom == 0, 1.0, denom)
    similarity = references @ query / denom
    return np.clip(1.0 - similarity, 0.0, 2.0)


DISTANCE_METRICS: Dict[str, DistanceFn] = {
    "euclidean": euclidean_distance,
    "cosine": cosine_distance,
}


def confidence_from_distance(distance: float) -> float:
    return float(min(1.0, max(0.0, 1.0 - distance)))


def label_sort_key(label: Label) -> Tuple[int, float, str]:
    """Numeric labels first (by value), then the rest lexicographically."""
    try:
        return (0, float(label), "")
    except (TypeError, ValueError):
        return (1, 0.0, str(label))


class LabeledDescriptorSet:
    """Read-only label -> reference embeddings mapping for one scan session."""

    def __init__(self, descriptors: Optional[Mapping[Label, Sequence[Sequence[float]]]] = None) -> None:
        self._refs: Dict[Label, np.ndarray] = {}
        self._dimension: Optional[int] = None
        for label, refs in (descriptors or {}).items():
            matrix = np.asarray(list(refs), dtype="float64")
            if matrix.size == 0:
                continue
            if matrix.ndim == 1:
                matrix = matrix.reshape(1, -1)
            if self._dimension is None:
                self._dimension = int(matrix.shape[1])
            elif matrix.shape[1] != self._dimension:
                raise ValueError(
                    f"Descriptor dimension mismatch for {label}: {matrix.shape[1]} != {self._dimension}"
                )
            matrix.setflags(write=False)
            self._refs[label] = matrix

    @classmethod
    def from_roster(cls, entries: Iterable[RosterEntry]) -> "LabeledDescriptorSet":
        return cls({entry.user_id: entry.descriptors for entry in entries if entry.enrolled})

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def labels(self) -> List[Label]:
        return list(self._refs)

    def references(self, label: Label) -> np.ndarray:
        return self._refs[label]

    def items(self) -> Iterator[Tuple[Label, np.ndarray]]:
        return iter(self._refs.items())

    def reference_count(self) -> int:
        return sum(len(refs) for refs in self._refs.values())

    def is_empty(self) -> bool:
        return not self._refs

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, label: object) -> bool:
        return label in self._refs


@dataclass(frozen=True)
class MatchResult:
    label: Optional[Label]
    distance: float
    confidence: float
    best_label: Optional[Label] = None

    @property
    def matched(self) -> bool:
        return self.label is not None


NO_MATCH = MatchResult(label=None, distance=float("inf"), confidence=0.0)


class FaceMatcher:
    """Finds the closest enrolled label for a query embedding.

    Confidence is ``1 - distance``; a best match whose confidence falls below
    the threshold is reported as no match. Equal distances resolve to the
    lowest numeric label so results do not depend on roster order.
    """

    def __init__(self, threshold: float = 0.6, metric: str = "euclidean") -> None:
        if metric not in DISTANCE_METRICS:
            raise ValueError(f"Unknown distance metric: {metric}")
        self.threshold = float(threshold)
        self.metric = metric
        self._distance = DISTANCE_METRICS[metric]

    def best_distances(self, embedding: Sequence[float], descriptor_set: LabeledDescriptorSet) -> Dict[Label, float]:
        query = np.asarray(embedding, dtype="float64").ravel()
        if descriptor_set.dimension is not None and query.shape[0] != descriptor_set.dimension:
            raise ValueError(
                f"Embedding dimension {query.shape[0]} does not match roster dimension {descriptor_set.dimension}"
            )
        return {
            label: float(np.min(self._distance(query, refs)))
            for label, refs in descriptor_set.items()
        }

    def match(
        self,
        embedding: Sequence[float],
        descriptor_set: LabeledDescriptorSet,
        threshold: Optional[float] = None,
    ) -> MatchResult:
        if descriptor_set.is_empty():
            return NO_MATCH
        threshold = self.threshold if threshold is None else float(threshold)
        per_label = self.best_distances(embedding, descriptor_set)
        best_label, best_distance = min(
            per_label.items(), key=lambda item: (item[1], label_sort_key(item[0]))
        )
        confidence = confidence_from_distance(best_distance)
        if confidence < threshold:
            logger.debug(
                "[Matcher] Rejected best label %s: confidence=%.4f < threshold=%.3f",
                best_label,
                confidence,
                threshold,
            )
            return MatchResult(label=None, distance=best_distance, confidence=confidence, best_label=best_label)
        return MatchResult(label=best_label, distance=best_distance, confidence=confidence, best_label=best_label)
