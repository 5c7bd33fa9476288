class HistoryStoreError(Exception):
    """Base class for every error raised by the store"""


class NotFoundError(HistoryStoreError):
    """Record missing, or owned by someone other than the caller"""


class HistoryItemNotFound(NotFoundError):
    def __init__(self, item_id: str):
        super().__init__(f"History item not found: {item_id}")
        self.item_id = item_id


class UserNotFound(NotFoundError):
    def __init__(self, username: str):
        super().__init__(f"User not found: {username}")
        self.username = username


class ConstraintViolation(HistoryStoreError):
    """A write was rejected by a schema constraint; nothing was persisted"""


class TransientStorageError(HistoryStoreError):
    """The underlying database is unavailable; callers decide whether to retry"""


class AccessDenied(HistoryStoreError):
    """Admin access required"""


class ApiKeyNotConfigured(HistoryStoreError):
    """Neither a user-specific nor a global key is available"""
