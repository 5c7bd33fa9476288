import json
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import lazyload

from codec import (
    SLOT_FIELDS,
    decode_history_record,
    dump_document,
    encode_history_item,
    load_document,
    slot_rows,
)
from database import Database
from exceptions import HistoryItemNotFound
from models import HistoryImage, HistoryRecord
from schemas import (
    HistoryItem,
    HistoryItemUpdate,
    HistoryPage,
    ModelAttributes,
    VideoGenerationParams,
    VideoStatusPayload,
)

logger = logging.getLogger(__name__)

# Plain columns written with "keep the stored value when not supplied"
SCALAR_FIELDS = ("constructed_prompt", "settings_mode", "status", "error")

HISTORY_FILTERS = (None, "all", "image", "video")


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7396) to target and return the result.

    Keys in the patch overwrite the same keys in the target, nested objects
    are merged, and a None value removes the key. Keys the patch does not
    mention are left alone.
    """
    if not isinstance(patch, dict):
        return patch
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


class HistoryStore:
    """Durable record of generation jobs, their artifacts and their status"""

    def __init__(self, db: Database):
        self.db = db

    # ---------- Create ----------
    def insert(self, item: HistoryItem) -> None:
        """Insert a new item with its slot rows in one transaction"""
        record, images = encode_history_item(item)
        record.images = images
        with self.db.transaction() as session:
            session.add(record)
        logger.debug("Inserted history item %s for %s", item.id, item.username)

    # ---------- Read ----------
    def find_by_id(self, item_id: str) -> Optional[HistoryItem]:
        with self.db.session() as session:
            record = session.get(HistoryRecord, item_id)
            return decode_history_record(record) if record is not None else None

    def find_all_by_username(self, username: str) -> List[HistoryItem]:
        """Every item owned by username, newest first"""
        with self.db.session() as session:
            records = (
                session.query(HistoryRecord)
                .filter(HistoryRecord.username == username)
                .order_by(HistoryRecord.timestamp.desc(), HistoryRecord.id.desc())
                .all()
            )
            return [decode_history_record(record) for record in records]

    # ---------- Update ----------
    def apply_update(self, item_id: str, updates: Union[HistoryItemUpdate, Dict[str, Any]]) -> None:
        """Apply a partial update atomically.

        Plain fields are only written when supplied. ``attributes`` and
        ``video_generation_params`` are merged into the stored documents;
        known keys may be given by field name or by their stored camelCase
        name.
        Each supplied slot array replaces the stored one in full: its rows
        are deleted and one row per populated slot is inserted.

        Raises HistoryItemNotFound, with nothing written, when no item has
        this id.
        """
        if isinstance(updates, dict):
            updates = HistoryItemUpdate(**updates)

        with self.db.transaction() as session:
            query = (
                session.query(HistoryRecord)
                .options(lazyload(HistoryRecord.images))
                .filter(HistoryRecord.id == item_id)
            )
            if not self.db.is_sqlite:
                # SQLite transactions already start with BEGIN IMMEDIATE
                query = query.with_for_update()
            record = query.one_or_none()
            if record is None:
                raise HistoryItemNotFound(item_id)

            for field in SCALAR_FIELDS:
                value = getattr(updates, field)
                if value is not None:
                    setattr(record, field, value)

            if updates.attributes:
                current = load_document(record.attributes, item_id, "attributes") or {}
                record.attributes = dump_document(
                    merge_patch(current, ModelAttributes.aliased_patch(updates.attributes))
                )

            if updates.video_generation_params:
                current = load_document(record.video_generation_params, item_id, "videoGenerationParams") or {}
                record.video_generation_params = dump_document(
                    merge_patch(current, VideoGenerationParams.aliased_patch(updates.video_generation_params))
                )

            for field, kind, count_column in SLOT_FIELDS:
                urls = getattr(updates, field)
                if urls is None:
                    continue
                session.query(HistoryImage).filter(
                    HistoryImage.history_id == item_id,
                    HistoryImage.type == kind,
                ).delete(synchronize_session=False)
                session.add_all(slot_rows(item_id, kind, urls))
                setattr(record, count_column, len(urls))

        logger.debug("Updated history item %s", item_id)

    # ---------- Delete ----------
    def delete(self, item_id: str) -> None:
        """Delete an item together with all of its slot rows"""
        with self.db.transaction() as session:
            record = session.get(HistoryRecord, item_id)
            if record is None:
                raise HistoryItemNotFound(item_id)
            session.delete(record)
        logger.info("Deleted history item %s", item_id)

    # ---------- Paginate ----------
    def list_for_user(
        self,
        username: str,
        page: int = 1,
        limit: int = 10,
        filter: Optional[str] = None,
    ) -> HistoryPage:
        """One page of a user's items, newest first.

        ``filter`` is "image", "video", or None/"all". Items with video
        generation parameters are video items; every other item is an image
        item. page and limit are not clamped here.
        """
        if filter not in HISTORY_FILTERS:
            raise ValueError(f"Unknown history filter: {filter}")

        conditions = [HistoryRecord.username == username]
        if filter == "video":
            conditions.append(HistoryRecord.video_generation_params.isnot(None))
        elif filter == "image":
            conditions.append(HistoryRecord.video_generation_params.is_(None))
        return self._page(conditions, page, limit)

    def list_all(self, page: int = 1, limit: int = 10) -> HistoryPage:
        """One page of every user's items, newest first (admin view)"""
        return self._page([], page, limit)

    def _page(self, conditions: list, page: int, limit: int) -> HistoryPage:
        offset = (page - 1) * limit
        with self.db.session() as session:
            total_count = (
                session.query(func.count(HistoryRecord.id)).filter(*conditions).scalar() or 0
            )
            records = (
                session.query(HistoryRecord)
                .filter(*conditions)
                .order_by(HistoryRecord.timestamp.desc(), HistoryRecord.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            items = [decode_history_record(record) for record in records]

        return HistoryPage(
            items=items,
            total_count=total_count,
            has_more=offset + limit < total_count,
            current_page=page,
        )

    # ---------- Status ----------
    def get_status(self, item_id: str, username: str) -> Optional[VideoStatusPayload]:
        """Compact job status for polling.

        Returns None when the item does not exist or belongs to someone
        else, and status "unknown" for items that are not video jobs.
        """
        with self.db.session() as session:
            row = (
                session.query(HistoryRecord.video_generation_params)
                .filter(HistoryRecord.id == item_id, HistoryRecord.username == username)
                .one_or_none()
            )
            if row is None:
                return None

            raw_params = row[0]
            if not raw_params:
                return VideoStatusPayload(status="unknown")

            try:
                params = json.loads(raw_params)
            except ValueError:
                logger.error("Failed to parse videoGenerationParams JSON for history item %s", item_id)
                return VideoStatusPayload(status="unknown")
            if not isinstance(params, dict):
                return VideoStatusPayload(status="unknown")

            # The slot row wins over the URL recorded in the parameters
            video_url = (
                session.query(HistoryImage.url)
                .filter(HistoryImage.history_id == item_id, HistoryImage.type == "generated_video")
                .order_by(HistoryImage.slot_index)
                .limit(1)
                .scalar()
            )

        status = params.get("status") or "processing"
        seed = params.get("seed")
        error = params.get("error")

        return VideoStatusPayload(
            status=str(status),
            video_url=video_url or params.get("localVideoUrl") or None,
            error=str(error) if error is not None else None,
            seed=seed if isinstance(seed, int) and not isinstance(seed, bool) else None,
        )
