"""Conversion between history rows and ``HistoryItem`` objects.

A history item is stored as one ``history`` row plus one ``history_images``
row per populated slot of its three slot arrays. Attribute and video
parameter bags are stored as JSON text. Reading never fails because of a
damaged document: the damaged part decodes as empty and the rest of the item
is returned as usual.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import ValidationError

from models import HistoryImage, HistoryRecord
from schemas import HistoryItem, ModelAttributes, ParamBag, SlotArray, VideoGenerationParams

logger = logging.getLogger(__name__)

# (HistoryItem field, history_images.type, HistoryRecord length column)
SLOT_FIELDS = (
    ("edited_image_urls", "edited", "edited_count"),
    ("original_image_urls", "original_for_comparison", "original_count"),
    ("generated_video_urls", "generated_video", "video_count"),
)


def dump_document(document: Optional[Dict[str, Any]]) -> Optional[str]:
    if document is None:
        return None
    return json.dumps(document)


def load_document(raw: Optional[str], item_id: str, field: str) -> Optional[Dict[str, Any]]:
    """Parse a stored JSON object.

    Returns None when nothing is stored and an empty dict when the stored
    text is not a JSON object.
    """
    if not raw:
        return None
    try:
        document = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Malformed %s JSON on history item %s; using empty document", field, item_id)
        return {}
    if document is None:
        return None
    if not isinstance(document, dict):
        logger.warning("%s on history item %s is not a JSON object; using empty document", field, item_id)
        return {}
    return document


def validate_bag(cls: Type[ParamBag], document: Dict[str, Any], item_id: str, field: str) -> ParamBag:
    """Build a bag model, dropping keys whose stored value has the wrong type"""
    document = dict(document)
    while True:
        try:
            return cls.model_validate(document)
        except ValidationError as e:
            bad_keys = {err["loc"][0] for err in e.errors() if err.get("loc")}
            bad_keys &= set(document)
            if not bad_keys:
                logger.warning("Unusable %s on history item %s; using empty document", field, item_id)
                return cls()
            logger.warning("Dropping invalid %s keys %s on history item %s", field, sorted(bad_keys), item_id)
            for key in bad_keys:
                document.pop(key)


def slot_rows(item_id: str, kind: str, urls: Optional[SlotArray]) -> List[HistoryImage]:
    """One child row per populated slot, tagged with its position"""
    if urls is None:
        return []
    return [
        HistoryImage(history_id=item_id, url=url, type=kind, slot_index=index)
        for index, url in enumerate(urls)
        if url
    ]


def build_slot_array(pairs: Iterable[Tuple[int, str]], stored_length: Optional[int]) -> Optional[SlotArray]:
    """Rebuild a slot array from (slot_index, url) pairs, keeping empty slots as None.

    Returns None when the array was never stored and no slot is populated.
    """
    populated = {}
    for index, url in pairs:
        if index is None or index < 0:
            continue
        populated[index] = url

    if stored_length is None and not populated:
        return None

    length = max(stored_length or 0, max(populated) + 1 if populated else 0)
    return [populated.get(index) for index in range(length)]


def encode_history_item(item: HistoryItem) -> Tuple[HistoryRecord, List[HistoryImage]]:
    """Split an item into its history row and its child rows"""
    record = HistoryRecord(
        id=item.id,
        username=item.username,
        timestamp=item.timestamp,
        constructed_prompt=item.constructed_prompt,
        original_clothing_url=item.original_clothing_url,
        settings_mode=item.settings_mode,
        attributes=dump_document(item.attributes.to_document()),
        video_generation_params=dump_document(
            item.video_generation_params.to_document() if item.video_generation_params is not None else None
        ),
        status=item.status or "completed",
        error=item.error,
    )

    images: List[HistoryImage] = []
    for field, kind, count_column in SLOT_FIELDS:
        urls = getattr(item, field)
        setattr(record, count_column, len(urls) if urls is not None else None)
        images.extend(slot_rows(item.id, kind, urls))
    return record, images


def decode_history_record(record: HistoryRecord, images: Optional[Iterable[HistoryImage]] = None) -> HistoryItem:
    """Assemble an item from its history row and child rows"""
    if images is None:
        images = record.images

    by_kind: Dict[str, List[Tuple[int, str]]] = {kind: [] for _, kind, _ in SLOT_FIELDS}
    for image in images:
        if image.type in by_kind:
            by_kind[image.type].append((image.slot_index, image.url))

    slots = {}
    for field, kind, count_column in SLOT_FIELDS:
        slots[field] = build_slot_array(by_kind[kind], getattr(record, count_column))
    # Edited images are always present on an item
    if slots["edited_image_urls"] is None:
        slots["edited_image_urls"] = []

    attributes_doc = load_document(record.attributes, record.id, "attributes")
    attributes = validate_bag(ModelAttributes, attributes_doc or {}, record.id, "attributes")

    video_doc = load_document(record.video_generation_params, record.id, "videoGenerationParams")
    video_params = None
    if video_doc is not None:
        video_params = validate_bag(VideoGenerationParams, video_doc, record.id, "videoGenerationParams")

    settings_mode = record.settings_mode if record.settings_mode in ("basic", "advanced") else None
    status = record.status if record.status in ("processing", "completed", "failed") else "completed"

    return HistoryItem(
        id=record.id,
        username=record.username,
        timestamp=record.timestamp,
        constructed_prompt=record.constructed_prompt,
        original_clothing_url=record.original_clothing_url,
        settings_mode=settings_mode,
        attributes=attributes,
        video_generation_params=video_params,
        status=status,
        error=record.error or None,
        **slots,
    )
