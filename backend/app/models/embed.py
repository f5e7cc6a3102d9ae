"""
Pydantic models for embed configurations.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class EmbedConfig(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    enabled: bool = True
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_chats_per_session: Optional[int] = None
