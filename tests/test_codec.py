from codec import build_slot_array, decode_history_record, encode_history_item, load_document
from models import HistoryRecord


def test_build_slot_array_keeps_holes():
    assert build_slot_array([(1, "b")], 3) == [None, "b", None]
    assert build_slot_array([(3, "d"), (0, "a")], 2) == ["a", None, None, "d"]


def test_build_slot_array_without_stored_length_uses_highest_slot():
    assert build_slot_array([(2, "c")], None) == [None, None, "c"]
    assert build_slot_array([], None) is None
    assert build_slot_array([], 0) == []
    assert build_slot_array([], 2) == [None, None]


def test_encode_writes_one_row_per_populated_slot(make_item):
    item = make_item(
        edited_image_urls=[None, "/uploads/b.png", None],
        generated_video_urls=["https://x/v.mp4"],
    )

    record, images = encode_history_item(item)

    assert [(i.type, i.slot_index, i.url) for i in images] == [
        ("edited", 1, "/uploads/b.png"),
        ("generated_video", 0, "https://x/v.mp4"),
    ]
    assert record.edited_count == 3
    assert record.original_count is None
    assert record.video_count == 1
    assert record.video_generation_params is None


def test_round_trip_preserves_slots_and_fields(make_item):
    item = make_item(
        attributes={"gender": "male", "bodyType": "athletic", "customKey": "kept"},
        edited_image_urls=["/a.png", None, "/c.png"],
        original_image_urls=[None, None, "/c-original.png"],
        generated_video_urls=[None],
        video_generation_params={"prompt": "walk", "seed": 7, "cameraFixed": True},
        status="processing",
        error="still running",
    )

    record, images = encode_history_item(item)
    decoded = decode_history_record(record, images)

    assert decoded.model_dump() == item.model_dump()
    assert decoded.attributes.body_type == "athletic"
    assert decoded.attributes.to_document()["customKey"] == "kept"
    assert decoded.video_generation_params.camera_fixed is True


def test_malformed_attributes_decode_as_empty(make_item):
    record, images = encode_history_item(make_item(edited_image_urls=["/a.png"]))
    record.attributes = "{not json"

    decoded = decode_history_record(record, images)

    assert decoded.attributes.to_document() == {}
    assert decoded.edited_image_urls == ["/a.png"]
    assert decoded.constructed_prompt == "A model wearing a linen shirt"


def test_malformed_video_params_decode_as_empty_document(make_item):
    record, images = encode_history_item(make_item())
    record.video_generation_params = "[1, 2"

    decoded = decode_history_record(record, images)

    assert decoded.video_generation_params is not None
    assert decoded.video_generation_params.to_document() == {}


def test_wrongly_typed_known_key_is_dropped(make_item):
    record, images = encode_history_item(make_item())
    record.video_generation_params = '{"seed": "not-a-number", "status": "completed"}'

    decoded = decode_history_record(record, images)

    assert decoded.video_generation_params.seed is None
    assert decoded.video_generation_params.status == "completed"


def test_decode_legacy_row_without_slot_counts():
    record = HistoryRecord(
        id="legacy",
        username="alice",
        timestamp=1,
        attributes=None,
        status="completed",
    )

    decoded = decode_history_record(record, [])

    assert decoded.edited_image_urls == []
    assert decoded.original_image_urls is None
    assert decoded.generated_video_urls is None
    assert decoded.attributes.to_document() == {}


def test_load_document():
    assert load_document(None, "x", "attributes") is None
    assert load_document("", "x", "attributes") is None
    assert load_document('{"a": 1}', "x", "attributes") == {"a": 1}
    assert load_document('"text"', "x", "attributes") == {}
