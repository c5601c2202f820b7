"""Decide whether two successive snapshots differ enough to notify clients."""

from music_dashboard.models.snapshots import DevicesSnapshot, PlaybackSnapshot, QueueSnapshot

DEFAULT_PROGRESS_JUMP_MS = 2000


def expected_progress(previous: PlaybackSnapshot, at: int) -> int:
    """Where playback should be at time `at` (ms) if nothing was touched."""
    if not previous.is_playing:
        return previous.progress_ms
    return previous.progress_ms + max(at - previous.captured_at, 0)


def has_track_changed(previous: PlaybackSnapshot | None, current: PlaybackSnapshot) -> bool:
    return previous is None or previous.track_id != current.track_id


def has_significant_playback_change(
    previous: PlaybackSnapshot | None,
    current: PlaybackSnapshot,
    threshold_ms: int = DEFAULT_PROGRESS_JUMP_MS,
) -> bool:
    """Track change, play/pause flip, or a progress jump beyond the threshold.

    The jump compares actual progress with the progress expected from the
    previous snapshot and the time elapsed between them, which also catches
    seeks made from other devices. Differences at or below the threshold are
    drift, not a change.
    """
    if previous is None:
        return True
    if previous.track_id != current.track_id:
        return True
    if previous.is_playing != current.is_playing:
        return True
    drift = abs(expected_progress(previous, current.captured_at) - current.progress_ms)
    return drift > threshold_ms


def has_significant_queue_change(previous_fingerprint: str | None, current: QueueSnapshot) -> bool:
    return previous_fingerprint != current.fingerprint


def has_significant_devices_change(previous_fingerprint: str | None, current: DevicesSnapshot) -> bool:
    return previous_fingerprint != current.fingerprint
