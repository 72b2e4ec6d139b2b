from typing import Any

from pydantic import BaseModel, ConfigDict


class SavedConfig(BaseModel):
    """Dashboard layout config owned by a user (configs/{id})."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    name: str
    config_json: dict[str, Any]
    is_public: bool = False
    created_at: float
    updated_at: float

    @classmethod
    def from_document(cls, config_id: str, doc: dict[str, Any]) -> "SavedConfig":
        return cls.model_validate({**doc, "id": config_id})
