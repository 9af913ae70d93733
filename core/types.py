"""
Persisted settings schemas.
Pydantic models matching the JSON documents kept in the settings store.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from core.models import ProviderSettings


# ----- Provider Settings -----

class PersistedProviderSettings(BaseModel):
    """Per-provider settings document: {apiKey?, selectedModelId?, customUrl?}."""
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    selected_model_id: Optional[str] = Field(default=None, alias="selectedModelId")
    custom_url: Optional[str] = Field(default=None, alias="customUrl")
    last_validated: Optional[datetime] = Field(default=None, alias="lastValidated")

    class Config:
        populate_by_name = True

    @classmethod
    def from_json(cls, raw: str) -> "PersistedProviderSettings":
        """Parse a stored document, falling back to empty settings when corrupt."""
        if not raw:
            return cls()
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            return cls()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_settings(self) -> ProviderSettings:
        return ProviderSettings(
            api_key=self.api_key,
            selected_model_id=self.selected_model_id,
            custom_url=self.custom_url,
            last_validated=self.last_validated,
        )


# ----- Generation Parameters -----

class GenerationParameters(BaseModel):
    """Global generation parameters shared by every provider."""
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1, alias="maxTokens")
    custom_prompt: str = Field(default="", alias="customPrompt")
    preferred_provider_id: str = Field(default="gemini", alias="preferredProviderId")
    request_timeout: float = Field(default=30.0, gt=0, alias="requestTimeout")

    class Config:
        populate_by_name = True
