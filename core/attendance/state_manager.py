"""Centralized confirmation state machine for one face-scan session.

Each recognized label moves ``Unseen -> Candidate -> Confirmed``. The manager
only records transitions; arming and cancelling the confirmation timers is
left to the caller, which receives the labels that started or lost their
candidacy on every tick.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .models import Label, PendingConfirmation


@dataclass
class TickTransition:
    started: List[PendingConfirmation] = field(default_factory=list)
    continuing: List[PendingConfirmation] = field(default_factory=list)
    cancelled: List[Label] = field(default_factory=list)
    already_present: List[Label] = field(default_factory=list)
    committing: List[Label] = field(default_factory=list)
    blocked: List[Label] = field(default_factory=list)


class AttendanceStateManager:
    """Thread-safe state manager for the scan-session attendance lifecycle."""

    def __init__(
        self,
        *,
        confirm_seconds: float = 2.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._confirm_seconds = max(confirm_seconds, 0.0)
        self._logger = logger or logging.getLogger(__name__)

        self._present: Set[Label] = set()
        self._pending: Dict[Label, PendingConfirmation] = {}
        self._committing: Set[Label] = set()
        # Labels whose write failed; they must leave the frame before retrying
        self._awaiting_absence: Set[Label] = set()
        self._generation = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------
    def load_present(self, labels: Iterable[Label]) -> None:
        with self._lock:
            self._present = set(labels)
            self._pending.clear()
            self._committing.clear()
            self._awaiting_absence.clear()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def is_present(self, label: Label) -> bool:
        with self._lock:
            return label in self._present

    def is_pending(self, label: Label) -> bool:
        with self._lock:
            return label in self._pending

    def pending(self, label: Label) -> Optional[PendingConfirmation]:
        with self._lock:
            return self._pending.get(label)

    def pending_labels(self) -> List[Label]:
        with self._lock:
            return list(self._pending)

    def present_labels(self) -> List[Label]:
        with self._lock:
            return list(self._present)

    def progress(self, label: Label, now: float) -> float:
        with self._lock:
            entry = self._pending.get(label)
            if entry is None:
                return 1.0 if label in self._present or label in self._committing else 0.0
            if self._confirm_seconds == 0:
                return 1.0
            return min(max(entry.elapsed(now) / self._confirm_seconds, 0.0), 1.0)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def observe_tick(
        self,
        confidences: Dict[Label, float],
        now: float,
    ) -> TickTransition:
        """Apply one detection tick: ``confidences`` holds every matched label."""
        transition = TickTransition()
        seen = set(confidences)
        with self._lock:
            for label in list(self._pending):
                if label not in seen:
                    entry = self._pending.pop(label)
                    entry.still_present = False
                    transition.cancelled.append(label)
                    self._logger.debug("[Attendance] Candidate %s interrupted", label)

            self._awaiting_absence &= seen

            for label, confidence in confidences.items():
                if label in self._present:
                    transition.already_present.append(label)
                elif label in self._committing:
                    transition.committing.append(label)
                elif label in self._awaiting_absence:
                    transition.blocked.append(label)
                elif label in self._pending:
                    entry = self._pending[label]
                    entry.last_seen = now
                    entry.confidence = confidence
                    transition.continuing.append(entry)
                else:
                    self._generation += 1
                    entry = PendingConfirmation(
                        label=label,
                        first_seen=now,
                        generation=self._generation,
                        last_seen=now,
                        confidence=confidence,
                    )
                    self._pending[label] = entry
                    transition.started.append(entry)
                    self._logger.debug("[Attendance] Candidate %s started at %.3f", label, now)
        return transition

    def begin_commit(self, label: Label, generation: int) -> Optional[PendingConfirmation]:
        """Candidate -> Confirmed. Returns None for stale or repeated confirmations."""
        with self._lock:
            entry = self._pending.get(label)
            if entry is None or entry.generation != generation:
                return None
            if label in self._present or label in self._committing:
                return None
            del self._pending[label]
            self._committing.add(label)
            return entry

    def complete_commit(self, label: Label) -> None:
        with self._lock:
            self._committing.discard(label)
            self._present.add(label)
            self._pending.pop(label, None)
        self._logger.info("[Attendance] %s marked present", label)

    def fail_commit(self, label: Label) -> None:
        with self._lock:
            self._committing.discard(label)
            self._awaiting_absence.add(label)
        self._logger.info("[Attendance] Commit for %s failed; waiting for the face to be re-presented", label)

    def abandon_commit(self, label: Label) -> None:
        with self._lock:
            self._committing.discard(label)

    def clear_pending(self) -> List[Label]:
        with self._lock:
            labels = list(self._pending)
            for entry in self._pending.values():
                entry.still_present = False
            self._pending.clear()
            return labels

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------
    @property
    def confirm_seconds(self) -> float:
        return self._confirm_seconds
