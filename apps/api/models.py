from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database import Base

IMAGE_KINDS = ("edited", "original_for_comparison", "generated_video")
KEY_MODES = ("global", "user_specific")
ROLES = ("admin", "user")


def _mode_check(column: str) -> CheckConstraint:
    return CheckConstraint(f"{column} IN ('global', 'user_specific')", name=f"ck_users_{column}")


class HistoryRecord(Base):
    __tablename__ = "history"

    # Column names match databases written by the original app
    id = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    timestamp = Column(BigInteger, nullable=False)  # epoch milliseconds
    constructed_prompt = Column("constructedPrompt", Text, nullable=True)
    original_clothing_url = Column("originalClothingUrl", Text, nullable=True)
    settings_mode = Column("settingsMode", String, nullable=True)  # basic, advanced
    attributes = Column(Text, nullable=True)  # JSON document
    video_generation_params = Column("videoGenerationParams", Text, nullable=True)  # JSON document
    status = Column(String, nullable=False, default="completed", server_default="completed")
    error = Column(Text, nullable=True)

    # Slot array lengths; NULL means the array is absent
    edited_count = Column(Integer, nullable=True)
    original_count = Column(Integer, nullable=True)
    video_count = Column(Integer, nullable=True)

    images = relationship(
        "HistoryImage",
        back_populates="history",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="HistoryImage.slot_index",
    )

    __table_args__ = (
        Index("idx_history_username_timestamp", "username", "timestamp"),
    )


class HistoryImage(Base):
    __tablename__ = "history_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    history_id = Column(String, ForeignKey("history.id", ondelete="CASCADE"), nullable=False)
    url = Column(Text, nullable=False)
    type = Column(String, nullable=False)  # edited, original_for_comparison, generated_video
    slot_index = Column(Integer, nullable=False)

    history = relationship("HistoryRecord", back_populates="images")

    __table_args__ = (
        CheckConstraint(
            "type IN ('edited', 'original_for_comparison', 'generated_video')",
            name="ck_history_images_type",
        ),
        Index("idx_history_images_history_id", "history_id"),
    )


class User(Base):
    __tablename__ = "users"

    username = Column(String, primary_key=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)  # admin, user
    gemini_api_key_1 = Column(Text, nullable=True)
    gemini_api_key_1_mode = Column(String, nullable=False, default="global", server_default="global")
    gemini_api_key_2 = Column(Text, nullable=True)
    gemini_api_key_2_mode = Column(String, nullable=False, default="global", server_default="global")
    gemini_api_key_3 = Column(Text, nullable=True)
    gemini_api_key_3_mode = Column(String, nullable=False, default="global", server_default="global")
    fal_api_key = Column(Text, nullable=True)
    fal_api_key_mode = Column(String, nullable=False, default="global", server_default="global")
    app_api_key = Column(String, nullable=True)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
        _mode_check("gemini_api_key_1_mode"),
        _mode_check("gemini_api_key_2_mode"),
        _mode_check("gemini_api_key_3_mode"),
        _mode_check("fal_api_key_mode"),
        Index("idx_users_app_api_key", "app_api_key", unique=True),
    )


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    name = Column(String, primary_key=True)
    applied_at = Column(BigInteger, nullable=False)
