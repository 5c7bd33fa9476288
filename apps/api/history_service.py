"""Owner-checked history operations used by request handlers and webhooks.

An item that exists but belongs to someone else is reported exactly like a
missing one.
"""
import logging
import time
import uuid
from typing import Any, Dict, Optional, Union

from exceptions import AccessDenied, HistoryItemNotFound
from history_store import HistoryStore
from schemas import (
    HistoryItem,
    HistoryItemUpdate,
    HistoryPage,
    ModelAttributes,
    SlotArray,
    VideoGenerationParams,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def now_ms() -> int:
    return int(time.time() * 1000)


class HistoryService:
    def __init__(self, store: HistoryStore):
        self.store = store

    def _owned_item(self, item_id: str, username: str) -> HistoryItem:
        item = self.store.find_by_id(item_id)
        if item is None or item.username != username:
            raise HistoryItemNotFound(item_id)
        return item

    def add_history_item(
        self,
        username: str,
        attributes: Union[ModelAttributes, Dict[str, Any]],
        constructed_prompt: str,
        original_clothing_url: str,
        edited_image_urls: SlotArray,
        settings_mode: str,
        status: str = "completed",
        error: Optional[str] = None,
    ) -> str:
        """Record a new image job and return its id"""
        item = HistoryItem(
            id=str(uuid.uuid4()),
            username=username,
            timestamp=now_ms(),
            attributes=attributes,
            constructed_prompt=constructed_prompt,
            original_clothing_url=original_clothing_url,
            edited_image_urls=edited_image_urls,
            settings_mode=settings_mode,
            status=status,
            error=error,
        )
        self.store.insert(item)
        return item.id

    def add_standalone_video_item(
        self,
        username: str,
        video_urls: SlotArray,
        video_params: Union[VideoGenerationParams, Dict[str, Any]],
    ) -> str:
        """Record a video job that did not start from an image job"""
        if not video_params:
            raise ValueError("video_params are required for standalone video history.")
        if isinstance(video_params, dict):
            video_params = VideoGenerationParams.model_validate(video_params)

        source = video_params.source_image_url
        item = HistoryItem(
            id=str(uuid.uuid4()),
            username=username,
            timestamp=now_ms(),
            attributes=ModelAttributes(),
            constructed_prompt=video_params.prompt,
            original_clothing_url=source,
            # The source image goes with the comparison originals, not the edits
            edited_image_urls=[None, None, None, None],
            original_image_urls=[source, None, None, None],
            settings_mode="basic",
            generated_video_urls=video_urls,
            video_generation_params=video_params,
        )
        self.store.insert(item)
        return item.id

    def update_for_owner(
        self,
        item_id: str,
        username: str,
        updates: Union[HistoryItemUpdate, Dict[str, Any]],
    ) -> None:
        self._owned_item(item_id, username)
        self.store.apply_update(item_id, updates)

    def add_video_to_item(
        self,
        item_id: str,
        username: str,
        video_urls: SlotArray,
        video_params: Union[VideoGenerationParams, Dict[str, Any]],
    ) -> None:
        """Attach a video job to an existing image job"""
        if not video_params:
            raise ValueError("video_params are required")
        if isinstance(video_params, dict):
            video_params = VideoGenerationParams.model_validate(video_params)

        self._owned_item(item_id, username)
        self.store.apply_update(item_id, HistoryItemUpdate(
            generated_video_urls=video_urls,
            video_generation_params=video_params.to_document(),
        ))

    def record_video_result(
        self,
        username: str,
        item_id: str,
        video_urls: Optional[SlotArray] = None,
        local_video_url: Optional[str] = _UNSET,
        seed: Optional[int] = _UNSET,
        status: Optional[str] = _UNSET,
        error: Optional[str] = _UNSET,
        video_model: Optional[str] = _UNSET,
    ) -> bool:
        """Store the outcome of a video job reported by a webhook or poll.

        Only the arguments actually passed go into the video parameters
        patch; passing None removes that key. Unknown ids and ids owned by
        another user are logged and ignored. Returns whether anything was
        written.
        """
        item = self.store.find_by_id(item_id)
        if item is None or item.username != username:
            logger.warning("History item %s not found or user %s is not authorized.", item_id, username)
            return False

        patch = {}
        for key, value in (
            ("videoModel", video_model),
            ("seed", seed),
            ("localVideoUrl", local_video_url),
            ("status", status),
            ("error", error),
        ):
            if value is not _UNSET:
                patch[key] = value

        updates = HistoryItemUpdate(
            video_generation_params=patch or None,
            generated_video_urls=video_urls,
        )
        self.store.apply_update(item_id, updates)
        return True

    def delete_for_owner(self, item_id: str, username: str) -> None:
        self._owned_item(item_id, username)
        self.store.delete(item_id)
        logger.info("User %s deleted history item %s", username, item_id)

    def get_for_viewer(self, item_id: str, username: str, role: str = "user") -> HistoryItem:
        """The item, if username owns it or is an admin"""
        item = self.store.find_by_id(item_id)
        if item is None or (item.username != username and role != "admin"):
            raise HistoryItemNotFound(item_id)
        return item

    def list_all_for_admin(self, role: str, page: int = 1, limit: int = 10) -> HistoryPage:
        if role != "admin":
            raise AccessDenied("Admin access required")
        return self.store.list_all(page, limit)
