from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any, Literal

SettingsMode = Literal["basic", "advanced"]
JobStatus = Literal["processing", "completed", "failed"]
Role = Literal["admin", "user"]
KeyMode = Literal["global", "user_specific"]

SlotArray = List[Optional[str]]


class ParamBag(BaseModel):
    """Known keys as attributes, stored in camelCase; unknown keys are kept as extras"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"
        protected_namespaces = ()

    def to_document(self) -> Dict[str, Any]:
        """JSON document as it is stored"""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def aliased_patch(cls, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Rename top-level patch keys given by field name to their stored alias"""
        fields = cls.model_fields
        return {
            (fields[key].alias or key) if key in fields else key: value
            for key, value in patch.items()
        }


# Fashion, model and scene parameters used to build the prompt
class ModelAttributes(ParamBag):
    gender: Optional[str] = None
    body_type: Optional[str] = None
    body_size: Optional[str] = None
    age_range: Optional[str] = None
    ethnicity: Optional[str] = None
    pose_style: Optional[str] = None
    background: Optional[str] = None
    fashion_style: Optional[str] = None
    hair_style: Optional[str] = None
    model_expression: Optional[str] = None
    lighting_type: Optional[str] = None
    light_quality: Optional[str] = None
    camera_angle: Optional[str] = None
    lens_effect: Optional[str] = None
    depth_of_field: Optional[str] = None
    time_of_day: Optional[str] = None
    overall_mood: Optional[str] = None
    fabric_rendering: Optional[str] = None


class VideoGenerationParams(ParamBag):
    prompt: Optional[str] = None
    resolution: Optional[str] = None
    video_model: Optional[Literal["lite", "pro"]] = None
    duration: Optional[str] = None
    seed: Optional[int] = None
    source_image_url: Optional[str] = None
    model_movement: Optional[str] = None
    fabric_motion: Optional[str] = None
    camera_action: Optional[str] = None
    aesthetic_vibe: Optional[str] = None
    camera_fixed: Optional[bool] = None
    # Written by webhook / polling completion
    status: Optional[JobStatus] = None
    error: Optional[str] = None
    local_video_url: Optional[str] = None


# History schemas
class HistoryItem(BaseModel):
    id: str
    username: str
    timestamp: int  # epoch milliseconds
    constructed_prompt: Optional[str] = None
    original_clothing_url: Optional[str] = None
    settings_mode: Optional[SettingsMode] = None
    attributes: ModelAttributes = ModelAttributes()
    video_generation_params: Optional[VideoGenerationParams] = None
    status: JobStatus = "completed"
    error: Optional[str] = None
    edited_image_urls: SlotArray = []
    original_image_urls: Optional[SlotArray] = None  # pre-upscale / pre-face-detail versions
    generated_video_urls: Optional[SlotArray] = None

    @property
    def is_video(self) -> bool:
        return self.video_generation_params is not None


class HistoryItemUpdate(BaseModel):
    """Partial update; fields left as None are not touched"""

    class Config:
        extra = "forbid"

    constructed_prompt: Optional[str] = None
    settings_mode: Optional[SettingsMode] = None
    status: Optional[JobStatus] = None
    error: Optional[str] = None
    # Merged into the stored documents (JSON merge patch)
    attributes: Optional[Dict[str, Any]] = None
    video_generation_params: Optional[Dict[str, Any]] = None
    # Replaced in full
    edited_image_urls: Optional[SlotArray] = None
    original_image_urls: Optional[SlotArray] = None
    generated_video_urls: Optional[SlotArray] = None


class HistoryPage(BaseModel):
    items: List[HistoryItem]
    total_count: int
    has_more: bool
    current_page: int


class VideoStatusPayload(BaseModel):
    # processing, completed or failed; "unknown" for image jobs. Other stored
    # values are reported as they are.
    status: str
    video_url: Optional[str] = None
    error: Optional[str] = None
    seed: Optional[int] = None


# User schemas
class UserRecord(BaseModel):
    """Full stored user row, including encrypted key material"""

    username: str
    password_hash: str
    role: Role
    gemini_api_key_1: Optional[str] = None
    gemini_api_key_1_mode: KeyMode = "global"
    gemini_api_key_2: Optional[str] = None
    gemini_api_key_2_mode: KeyMode = "global"
    gemini_api_key_3: Optional[str] = None
    gemini_api_key_3_mode: KeyMode = "global"
    fal_api_key: Optional[str] = None
    fal_api_key_mode: KeyMode = "global"
    app_api_key: Optional[str] = None

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    username: str
    role: Role
    gemini_api_key_1_mode: KeyMode
    gemini_api_key_2_mode: KeyMode
    gemini_api_key_3_mode: KeyMode
    fal_api_key_mode: KeyMode

    class Config:
        from_attributes = True


class UserConfigUpdate(BaseModel):
    """Admin edit of a user; only fields that are not None are written.

    API keys are plaintext here and encrypted before storage; an empty
    string clears the stored key.
    """

    role: Optional[Role] = None
    gemini_api_key_1_mode: Optional[KeyMode] = None
    gemini_api_key_2_mode: Optional[KeyMode] = None
    gemini_api_key_3_mode: Optional[KeyMode] = None
    fal_api_key_mode: Optional[KeyMode] = None
    gemini_api_key_1: Optional[str] = None
    gemini_api_key_2: Optional[str] = None
    gemini_api_key_3: Optional[str] = None
    fal_api_key: Optional[str] = None
