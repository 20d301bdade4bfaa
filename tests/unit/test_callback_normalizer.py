"""
Unit tests for generation callback normalization
Covers every payload shape the provider has been observed to send
"""
import pytest

from beatmarket.services.callback_normalizer import (
    STAGE_COMPLETE,
    STAGE_ERROR,
    STAGE_FIRST,
    STAGE_UNKNOWN,
    canonical_stage,
    normalize_callback,
    normalize_track,
)


@pytest.mark.unit
class TestStageAliases:

    @pytest.mark.parametrize("raw,expected", [
        ("complete", STAGE_COMPLETE),
        ("SUCCESS", STAGE_COMPLETE),
        ("first", STAGE_FIRST),
        ("text_success", STAGE_FIRST),
        ("error", STAGE_ERROR),
        ("generate_audio_failed", STAGE_ERROR),
        ("something-new", STAGE_UNKNOWN),
        (None, STAGE_UNKNOWN),
    ])
    def test_canonical_stage(self, raw, expected):
        assert canonical_stage(raw) == expected


@pytest.mark.unit
class TestTrackNormalization:

    def test_aliased_fields_resolved(self):
        track = normalize_track({
            "audioId": "abc",
            "sourceAudioUrl": "https://cdn.example.com/a.mp3",
            "streamAudioUrl": "https://cdn.example.com/a-stream",
            "imageUrl": "https://cdn.example.com/a.jpg",
            "duration": "119.6",
        })

        assert track.suno_id == "abc"
        assert track.audio_url == "https://cdn.example.com/a.mp3"
        assert track.stream_url == "https://cdn.example.com/a-stream"
        assert track.image_url == "https://cdn.example.com/a.jpg"
        assert track.duration == 120
        assert track.has_audio

    def test_empty_record_dropped(self):
        assert normalize_track({"title": "only metadata"}) is None
        assert normalize_track("not a record") is None


@pytest.mark.unit
class TestPayloadShapes:

    def test_provider_envelope(self):
        payload = {
            "code": 200,
            "msg": "All generated successfully.",
            "data": {
                "callbackType": "complete",
                "task_id": "task-1",
                "data": [
                    {"id": "t1", "audio_url": "https://cdn.example.com/1.mp3"},
                    {"id": "t2", "audio_url": "https://cdn.example.com/2.mp3"},
                ],
            },
        }

        normalized = normalize_callback(payload)

        assert normalized.detector == "provider_envelope"
        assert normalized.stage == STAGE_COMPLETE
        assert normalized.task_id == "task-1"
        assert normalized.track_ids == ["t1", "t2"]

    def test_flat_stage_with_nested_tracks(self):
        payload = {
            "status": "first_success",
            "taskId": "task-2",
            "data": {"data": [{"id": "t1", "stream_url": "https://cdn.example.com/s1"}]},
        }

        normalized = normalize_callback(payload)

        assert normalized.detector == "flat_stage"
        assert normalized.stage == STAGE_FIRST
        assert normalized.task_id == "task-2"
        assert normalized.tracks[0].stream_url == "https://cdn.example.com/s1"

    @pytest.mark.parametrize("payload", [
        {"data": [{"id": "t1", "audioUrl": "https://cdn.example.com/1.mp3"}]},
        {"data": {"response": {"sunoData": [{"id": "t1", "audioUrl": "https://cdn.example.com/1.mp3"}]}}},
        {"response": [{"id": "t1", "audio_url": "https://cdn.example.com/1.mp3"}]},
    ])
    def test_record_shapes_promoted_to_complete(self, payload):
        normalized = normalize_callback(payload)

        assert normalized.detector == "record_shape"
        assert normalized.stage == STAGE_COMPLETE
        assert normalized.tracks[0].suno_id == "t1"

    def test_record_shape_without_audio_stays_unknown(self):
        normalized = normalize_callback({"data": [{"id": "t1", "stream_url": "https://cdn.example.com/s1"}]})

        assert normalized.stage == STAGE_UNKNOWN

    def test_unknown_stage_with_audio_promoted(self):
        payload = {"stage": "mystery", "data": [{"id": "t1", "audio_url": "https://cdn.example.com/1.mp3"}]}

        assert normalize_callback(payload).stage == STAGE_COMPLETE

    @pytest.mark.parametrize("payload", [None, [], "text", {"hello": "world"}])
    def test_unparseable_payloads(self, payload):
        normalized = normalize_callback(payload)

        assert normalized.stage == STAGE_UNKNOWN
        assert normalized.tracks == []
