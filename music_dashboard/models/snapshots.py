"""Point-in-time views of upstream state used only for change detection."""

import hashlib
from typing import Any

from pydantic import BaseModel, ConfigDict


def _hash_ids(ids: tuple[str, ...]) -> str:
    return hashlib.sha1("|".join(ids).encode("utf-8"), usedforsecurity=False).hexdigest()


class PlaybackSnapshot(BaseModel):
    """What is playing, where, and how far in."""

    model_config = ConfigDict(frozen=True)

    track_id: str | None = None
    is_playing: bool = False
    progress_ms: int = 0
    device_id: str | None = None
    shuffle: bool = False
    repeat: str = "off"
    captured_at: int = 0  # ms, clock of the poller

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None, captured_at: int) -> "PlaybackSnapshot":
        """Build a snapshot from a `GET /me/player` payload (or its empty-state form)."""
        data = data or {}
        item = data.get("item") or {}
        device = data.get("device") or {}
        return cls(
            track_id=item.get("id"),
            is_playing=bool(data.get("is_playing", False)),
            progress_ms=int(data.get("progress_ms") or 0),
            device_id=device.get("id"),
            shuffle=bool(data.get("shuffle_state", False)),
            repeat=data.get("repeat_state") or "off",
            captured_at=captured_at,
        )


class QueueSnapshot(BaseModel):
    """Upcoming track ids; compared by hash, not deep equality."""

    model_config = ConfigDict(frozen=True)

    track_ids: tuple[str, ...] = ()
    fingerprint: str = _hash_ids(())

    @classmethod
    def from_track_ids(cls, track_ids: list[str] | tuple[str, ...]) -> "QueueSnapshot":
        ids = tuple(track_ids)
        return cls(track_ids=ids, fingerprint=_hash_ids(ids))

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> "QueueSnapshot":
        """Build a snapshot from a `GET /me/player/queue` payload."""
        queue = (data or {}).get("queue") or []
        return cls.from_track_ids([str(track.get("id")) for track in queue if track])


class DevicesSnapshot(BaseModel):
    """Available devices with their active flag and volume."""

    model_config = ConfigDict(frozen=True)

    devices: tuple[tuple[str, bool, int | None], ...] = ()
    fingerprint: str = _hash_ids(())

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> "DevicesSnapshot":
        """Build a snapshot from a `GET /me/player/devices` payload."""
        entries = tuple(
            (str(device.get("id")), bool(device.get("is_active")), device.get("volume_percent"))
            for device in (data or {}).get("devices") or []
        )
        parts = tuple(f"{device_id}:{int(active)}:{volume}" for device_id, active, volume in entries)
        return cls(devices=entries, fingerprint=_hash_ids(parts))
