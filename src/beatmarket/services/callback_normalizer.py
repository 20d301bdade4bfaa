"""
Callback Normalizer
Extracts {stage, task_id, tracks} from heterogeneous provider webhook payloads
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

STAGE_COMPLETE = "complete"
STAGE_FIRST = "first"
STAGE_ERROR = "error"
STAGE_UNKNOWN = "unknown"

_STAGE_ALIASES = {
    "complete": STAGE_COMPLETE,
    "completed": STAGE_COMPLETE,
    "success": STAGE_COMPLETE,
    "first": STAGE_FIRST,
    "first_success": STAGE_FIRST,
    "text": STAGE_FIRST,
    "text_success": STAGE_FIRST,
    "streaming": STAGE_FIRST,
    "error": STAGE_ERROR,
    "failed": STAGE_ERROR,
    "create_task_failed": STAGE_ERROR,
    "generate_audio_failed": STAGE_ERROR,
}

AUDIO_KEYS = ("audio_url", "audioUrl", "audio", "song_url", "sourceAudioUrl")
STREAM_KEYS = ("stream_url", "streamUrl", "stream", "stream_audio_url", "streamAudioUrl")
IMAGE_KEYS = ("image_url", "imageUrl", "image_large_url", "image")
ID_KEYS = ("id", "sunoId", "suno_id", "audioId")


class NormalizedTrack(BaseModel):
    """One provider variant with aliased fields resolved"""
    suno_id: Optional[str] = None
    audio_url: Optional[str] = None
    stream_url: Optional[str] = None
    image_url: Optional[str] = None
    duration: Optional[int] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_url)


class NormalizedCallback(BaseModel):
    """Best-effort reading of a generation callback"""
    stage: str
    task_id: Optional[str] = None
    tracks: List[NormalizedTrack] = Field(default_factory=list)
    detector: str = ""

    @property
    def track_ids(self) -> List[str]:
        return [t.suno_id for t in self.tracks if t.suno_id]


def _first(record: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool) and key in ID_KEYS:
            return str(value)
    return None


def _duration(record: Dict[str, Any]) -> Optional[int]:
    value = record.get("duration")
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(round(value))
    return None


def normalize_track(record: Any) -> Optional[NormalizedTrack]:
    if not isinstance(record, dict):
        return None
    track = NormalizedTrack(
        suno_id=_first(record, ID_KEYS),
        audio_url=_first(record, AUDIO_KEYS),
        stream_url=_first(record, STREAM_KEYS),
        image_url=_first(record, IMAGE_KEYS),
        duration=_duration(record),
    )
    if not any([track.suno_id, track.audio_url, track.stream_url]):
        return None
    return track


def normalize_tracks(records: Any) -> List[NormalizedTrack]:
    if not isinstance(records, list):
        return []
    return [t for t in (normalize_track(r) for r in records) if t is not None]


def canonical_stage(raw: Any) -> str:
    if not isinstance(raw, str):
        return STAGE_UNKNOWN
    return _STAGE_ALIASES.get(raw.strip().lower(), STAGE_UNKNOWN)


def _string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def detect_provider_envelope(payload: Dict[str, Any]) -> Optional[NormalizedCallback]:
    """{code, msg, data: {callbackType, task_id, data: [...]}}"""
    data = payload.get("data")
    if not isinstance(data, dict) or "callbackType" not in data:
        return None
    return NormalizedCallback(
        stage=canonical_stage(data.get("callbackType")),
        task_id=_string(data.get("task_id")) or _string(data.get("taskId")) or _string(payload.get("taskId")),
        tracks=normalize_tracks(data.get("data")),
        detector="provider_envelope",
    )


def detect_flat_stage(payload: Dict[str, Any]) -> Optional[NormalizedCallback]:
    """{stage|status|event, taskId, data: [...] | {data: [...]}}"""
    raw_stage = payload.get("stage") or payload.get("status") or payload.get("event")
    if raw_stage is None:
        return None

    data = payload.get("data")
    tracks = normalize_tracks(data)
    if not tracks and isinstance(data, dict):
        tracks = normalize_tracks(data.get("data"))

    return NormalizedCallback(
        stage=canonical_stage(raw_stage),
        task_id=_string(payload.get("taskId")) or _string(payload.get("task_id")),
        tracks=tracks,
        detector="flat_stage",
    )


def detect_record_shape(payload: Dict[str, Any]) -> Optional[NormalizedCallback]:
    """Poll/record shapes: data[], data.data[], data.response[.sunoData][], response[]"""
    data = payload.get("data")
    candidates: List[Any] = [data]
    task_id = _string(payload.get("taskId")) or _string(payload.get("task_id"))

    if isinstance(data, dict):
        task_id = task_id or _string(data.get("taskId")) or _string(data.get("task_id"))
        response = data.get("response")
        candidates.append(data.get("data"))
        candidates.append(response)
        if isinstance(response, dict):
            candidates.append(response.get("sunoData"))
            candidates.append(response.get("data"))
    candidates.append(payload.get("response"))

    for candidate in candidates:
        tracks = normalize_tracks(candidate)
        if tracks:
            return NormalizedCallback(
                stage=STAGE_UNKNOWN,
                task_id=task_id,
                tracks=tracks,
                detector="record_shape",
            )
    return None


# Tried in priority order; the first detector returning a value wins
DETECTORS: List[Callable[[Dict[str, Any]], Optional[NormalizedCallback]]] = [
    detect_provider_envelope,
    detect_flat_stage,
    detect_record_shape,
]


def normalize_callback(payload: Any) -> NormalizedCallback:
    """
    Run the shape detectors over a payload.

    An unknown stage is promoted to complete when any track already carries
    an audio reference. Unparseable payloads come back as stage unknown with
    no tracks, which callers treat as a no-op.
    """
    if not isinstance(payload, dict):
        return NormalizedCallback(stage=STAGE_UNKNOWN, detector="none")

    normalized = None
    for detector in DETECTORS:
        normalized = detector(payload)
        if normalized is not None:
            break

    if normalized is None:
        return NormalizedCallback(
            stage=STAGE_UNKNOWN,
            task_id=_string(payload.get("taskId")) or _string(payload.get("task_id")),
            detector="none",
        )

    if normalized.stage == STAGE_UNKNOWN and any(t.has_audio for t in normalized.tracks):
        normalized.stage = STAGE_COMPLETE

    return normalized
