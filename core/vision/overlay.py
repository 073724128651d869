"""Operator overlay: bounding boxes, labels and confirmation progress."""
from __future__ import annotations

from typing import Iterable, Tuple

import cv2
import numpy as np

from core.attendance.models import (
    STATUS_ALREADY_MARKED,
    STATUS_CONFIRMED,
    STATUS_MARKING,
    STATUS_UNKNOWN,
    STATUS_WRITE_FAILED,
    RecognitionEvent,
)

# BGR colors
STATUS_COLORS = {
    STATUS_MARKING: (0, 165, 255),        # orange - confirming
    STATUS_CONFIRMED: (129, 185, 16),     # green - just marked
    STATUS_ALREADY_MARKED: (160, 160, 160),  # gray - present earlier
    STATUS_UNKNOWN: (68, 68, 239),        # red - not recognized
    STATUS_WRITE_FAILED: (180, 60, 160),  # purple - write failed, re-present
}


def status_color(status: str) -> Tuple[int, int, int]:
    return STATUS_COLORS.get(status, STATUS_COLORS[STATUS_UNKNOWN])


def event_caption(event: RecognitionEvent) -> str:
    name = event.name or (str(event.label) if event.label is not None else "")
    percent = int(round(event.confidence * 100))
    if event.status == STATUS_UNKNOWN:
        return "Tidak dikenali"
    if event.status == STATUS_ALREADY_MARKED:
        return f"{name} - Sudah diabsen"
    if event.status == STATUS_CONFIRMED:
        return f"{name} - Berhasil diabsen!"
    if event.status == STATUS_WRITE_FAILED:
        return f"{name} - Gagal, ulangi"
    return f"{name} ({percent}%)"


def draw_progress_bar(frame: np.ndarray, progress: float, x: int, y: int, w: int = 150, h: int = 16) -> None:
    bar_y = max(0, y - h - 36)

    cv2.rectangle(frame, (x, bar_y), (x + w, bar_y + h), (0, 0, 0), -1)

    filled_width = int(w * min(max(progress, 0.0), 1.0))
    if filled_width > 0:
        cv2.rectangle(frame, (x, bar_y), (x + filled_width, bar_y + h), (0, 255, 0), -1)

    cv2.rectangle(frame, (x, bar_y), (x + w, bar_y + h), (255, 255, 255), 1)

    progress_text = f"{int(progress * 100)}%"
    text_size = cv2.getTextSize(progress_text, cv2.FONT_HERSHEY_SIMPLEX, 0.4, 1)[0]
    text_x = x + (w - text_size[0]) // 2
    text_y = bar_y + (h + text_size[1]) // 2
    cv2.putText(frame, progress_text, (text_x, text_y),
                cv2.FONT_HERSHEY_SIMPLEX, 0.4, (255, 255, 255), 1, cv2.LINE_AA)


def draw_recognitions(frame: np.ndarray, events: Iterable[RecognitionEvent]) -> np.ndarray:
    """Return a copy of ``frame`` annotated with one box per recognition."""
    annotated = frame.copy()
    for event in events:
        if event.box is None:
            continue
        left, top, right, bottom = event.box.corners()
        color = status_color(event.status)
        thickness = 3 if event.status in (STATUS_MARKING, STATUS_CONFIRMED) else 2

        cv2.rectangle(annotated, (left, top), (right, bottom), color, thickness)

        label = event_caption(event)
        label_size, _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_DUPLEX, 0.6, 1)
        label_y = top - 10 if top > 30 else bottom + 30
        padding = 5
        cv2.rectangle(annotated,
                      (left - padding, label_y - label_size[1] - padding),
                      (left + label_size[0] + padding, label_y + padding),
                      color, -1)
        cv2.putText(annotated, label, (left, label_y),
                    cv2.FONT_HERSHEY_DUPLEX, 0.6, (255, 255, 255), 1, cv2.LINE_AA)

        if event.status == STATUS_MARKING:
            draw_progress_bar(annotated, event.progress, left, top)
    return annotated
