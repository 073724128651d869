import numpy as np
import pytest

from conftest import FakeBackendClient, ScriptedEngine
from core.attendance.models import (
    STATUS_ALREADY_MARKED,
    STATUS_CONFIRMED,
    STATUS_MARKING,
    STATUS_UNKNOWN,
    STATUS_WRITE_FAILED,
)
from core.attendance.session_loop import ScanSessionError, SessionRecognitionLoop, build_roster_entries
from core.inference.engine import ProviderNotReadyError


def build_loop(scheduler, backend, frame_source, script, ready=True):
    engine = ScriptedEngine(script, clock=scheduler.now, ready=ready)
    events = []
    loop = SessionRecognitionLoop(
        7,
        engine=engine,
        frame_source=frame_source,
        client=backend,
        scheduler=scheduler,
        broadcaster=events.append,
        interval_seconds=0.5,
        confirm_seconds=2.0,
    )
    return loop, engine, events


def statuses(events, label):
    return [
        event['data']['status']
        for event in events
        if event['type'] == 'face_recognized' and event['data']['student_id'] == label
    ]


def test_uninterrupted_recognition_confirms_once_after_delay(scheduler, backend, frame_source):
    loop, _, events = build_loop(scheduler, backend, frame_source, lambda now: [1])
    loop.start()

    scheduler.advance_to(1.5)
    assert backend.marks == []
    assert ('confirm', 1) in scheduler.pending_keys()

    scheduler.advance_to(2.0)
    assert [mark['student_id'] for mark in backend.marks] == [1]
    mark = backend.marks[0]
    assert mark['session_id'] == 7
    assert mark['confidence'] == pytest.approx(1.0)
    assert mark['image'].startswith('data:image/jpeg;base64,')

    scheduler.advance_to(6.0)
    assert len(backend.marks) == 1
    assert statuses(events, 1)[:5] == [STATUS_MARKING] * 5
    assert statuses(events, 1)[5] == STATUS_CONFIRMED
    assert set(statuses(events, 1)[6:]) == {STATUS_ALREADY_MARKED}
    assert [event['type'] for event in events].count('attendance_marked') == 1


def test_displaced_candidate_restarts_its_delay(scheduler, backend, frame_source):
    def script(now):
        if now <= 0.5:
            return [1]
        if now == 1.0:
            return [2]
        return [1]

    loop, _, _ = build_loop(scheduler, backend, frame_source, script)
    loop.start()

    scheduler.advance_to(2.0)
    assert backend.marks == []

    scheduler.advance_to(3.0)
    assert backend.marks == []

    scheduler.advance_to(3.5)
    assert [mark['student_id'] for mark in backend.marks] == [1]

    scheduler.advance_to(6.0)
    assert [mark['student_id'] for mark in backend.marks] == [1]


def test_already_present_student_is_never_written(scheduler, backend, frame_source):
    loop, _, events = build_loop(scheduler, backend, frame_source, lambda now: [3])
    loop.start()

    scheduler.advance_to(5.0)

    assert backend.marks == []
    assert set(statuses(events, 3)) == {STATUS_ALREADY_MARKED}
    assert loop.state.pending_labels() == []


def test_absent_tick_cancels_candidate(scheduler, backend, frame_source):
    def script(now):
        if now <= 1.0 or now >= 2.0:
            return [1]
        return []

    loop, _, _ = build_loop(scheduler, backend, frame_source, script)
    loop.start()

    scheduler.advance_to(1.5)
    assert ('confirm', 1) not in scheduler.pending_keys()

    scheduler.advance_to(3.5)
    assert backend.marks == []

    scheduler.advance_to(4.0)
    assert len(backend.marks) == 1


def test_failed_tick_counts_as_no_detection(scheduler, backend, frame_source):
    loop, engine, _ = build_loop(scheduler, backend, frame_source, lambda now: [1])
    engine.fail_at = {1.0}
    loop.start()

    scheduler.advance_to(3.0)
    assert backend.marks == []
    assert loop.active

    scheduler.advance_to(3.5)
    assert len(backend.marks) == 1


def test_unknown_face_never_becomes_candidate(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: ['stranger'])
    loop.start()
    scheduler.advance_to(0.0)

    events = loop.tick()
    assert len(events) == 1
    assert events[0].status == STATUS_UNKNOWN
    assert events[0].label is None

    scheduler.advance_to(5.0)
    assert backend.marks == []
    assert scheduler.pending_keys() == []


def test_unknown_face_clears_current_recognition(scheduler, backend, frame_source):
    loop, _, _ = build_loop(
        scheduler, backend, frame_source, lambda now: [1] if now < 1.0 else ['stranger']
    )
    loop.start()

    scheduler.advance_to(0.5)
    assert loop.snapshot()['current_recognition']['student_id'] == 1

    scheduler.advance_to(1.5)
    assert loop.snapshot()['current_recognition'] is None


def test_simultaneous_faces_are_tracked_independently(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [1, 2])
    loop.start()

    scheduler.advance_to(2.0)

    assert sorted(mark['student_id'] for mark in backend.marks) == [1, 2]


def test_confirming_twice_writes_once(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [1])
    loop.start()
    scheduler.advance_to(0.0)

    generation = loop.state.pending(1).generation
    assert loop.confirm(1, generation) is True
    assert loop.confirm(1, generation) is False

    scheduler.advance_to(4.0)
    assert len(backend.marks) == 1


def test_stale_generation_is_ignored(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [1])
    loop.start()
    scheduler.advance_to(0.5)

    generation = loop.state.pending(1).generation
    assert loop.confirm(1, generation + 1) is False
    assert backend.marks == []
    assert loop.state.is_pending(1)


def test_failed_write_requires_face_to_be_represented(scheduler, frame_source):
    backend = FakeBackendClient()
    backend.fail_marks = 1

    def script(now):
        if now == 6.5:
            return []
        return [1]

    loop, _, events = build_loop(scheduler, backend, frame_source, script)
    loop.start()

    scheduler.advance_to(2.0)
    assert backend.marks == []
    assert loop.snapshot()['message']['type'] == 'error'
    assert any(event['type'] == 'attendance_failed' for event in events)

    scheduler.advance_to(6.0)
    assert backend.calls.count(('mark', 1)) == 1
    assert statuses(events, 1)[-1] == STATUS_WRITE_FAILED

    scheduler.advance_to(8.5)
    assert backend.marks == []

    scheduler.advance_to(9.0)
    assert [mark['student_id'] for mark in backend.marks] == [1]


def test_stop_clears_timers_and_prevents_writes(scheduler, backend, frame_source):
    loop, _, events = build_loop(scheduler, backend, frame_source, lambda now: [1])
    loop.start()
    scheduler.advance_to(1.0)
    generation = loop.state.pending(1).generation

    loop.stop()

    assert scheduler.stopped
    assert scheduler.pending_keys() == []
    assert loop.state.pending_labels() == []
    assert loop.confirm(1, generation) is False
    scheduler.advance_to(5.0)
    assert backend.marks == []
    assert events[-1]['type'] == 'scan_stopped'


def test_start_requires_ready_engine(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [], ready=False)

    with pytest.raises(ProviderNotReadyError):
        loop.start()
    assert backend.calls == []


def test_start_requires_enrolled_faces(scheduler, frame_source):
    backend = FakeBackendClient(descriptors=[])
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [])

    with pytest.raises(ScanSessionError) as excinfo:
        loop.start()
    assert excinfo.value.status_code == 400
    assert not loop.active


def test_start_twice_is_rejected(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [])
    loop.start()

    with pytest.raises(ScanSessionError) as excinfo:
        loop.start()
    assert excinfo.value.status_code == 409


def test_snapshot_reports_totals_and_recent(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [1])
    loop.start()
    scheduler.advance_to(2.5)

    snapshot = loop.snapshot()
    assert snapshot['running'] is True
    assert snapshot['stats'] == {'total': 4, 'enrolled': 3, 'present': 2, 'absent': 2}
    assert snapshot['recent'][0]['student_id'] == 1
    assert snapshot['recent'][0]['name'] == 'Andi'
    assert snapshot['current_recognition']['student_id'] == 1
    assert snapshot['session'] == {'id': 7, 'topic': 'Praktikum Jaringan'}


def test_annotate_draws_on_a_copy(scheduler, backend, frame_source):
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [1])
    loop.start()
    scheduler.advance_to(0.5)

    frame = np.full((120, 160, 3), 80, dtype=np.uint8)
    annotated = loop.annotate(frame)

    assert annotated.shape == frame.shape
    assert not np.array_equal(annotated, frame)
    assert np.all(frame == 80)


def test_build_roster_entries_joins_roster_and_descriptors():
    roster = {
        'roster': [
            {'student_id': '5', 'student_name': 'Eka', 'attendance': {'status': 'HADIR'}},
            {'student_id': 6, 'student_name': 'Fajar', 'attendance': {'status': 'ALPA'}},
        ]
    }
    descriptors = [
        {'userId': 6, 'name': 'Fajar', 'nim': '2106', 'descriptors': [[0.1, 0.2], [0.2, 0.1]]},
        {'userId': '9', 'name': 'Gita', 'nim': '2109', 'descriptors': [[0.3, 0.3]]},
    ]

    entries = {entry.user_id: entry for entry in build_roster_entries(roster, descriptors)}

    assert set(entries) == {5, 6, 9}
    assert entries[5].already_present and not entries[5].enrolled
    assert not entries[6].already_present
    assert len(entries[6].descriptors) == 2
    assert entries[6].identifier == '2106'
    assert entries[9].name == 'Gita' and entries[9].enrolled


def test_descriptors_with_odd_dimension_are_dropped():
    descriptors = [
        {'userId': 1, 'descriptors': [[1.0, 0.0, 0.0, 0.0], [0.9, 0.1, 0.0, 0.0]]},
        {'userId': 2, 'descriptors': [[0.0, 1.0, 0.0, 0.0], [0.1, 0.2, 0.3]]},
        {'userId': 4, 'descriptors': [[0.1, 0.2, 0.3]]},
    ]

    entries = {entry.user_id: entry for entry in build_roster_entries({}, descriptors)}

    assert len(entries[1].descriptors) == 2
    assert len(entries[2].descriptors) == 1
    assert not entries[4].enrolled


def test_start_skips_student_enrolled_with_another_model(scheduler, frame_source):
    backend = FakeBackendClient()
    backend.descriptors.append({'userId': 4, 'name': 'Dewi', 'descriptors': [[0.1, 0.2, 0.3]]})
    loop, _, _ = build_loop(scheduler, backend, frame_source, lambda now: [1])

    loop.start()
    scheduler.advance_to(2.0)

    assert loop.snapshot()['stats']['enrolled'] == 3
    assert [mark['student_id'] for mark in backend.marks] == [1]
