"""
Pydantic schemas for the extraction API.
"""
from typing import Optional

from pydantic import BaseModel, Field

from savegram.instagram.normalize import PostType
from savegram.instagram.strategies import ExtractionMethod


class ExtractRequest(BaseModel):
    url: Optional[str] = None


class ExtractResponse(BaseModel):
    video_url: str = Field(alias="videoUrl")
    method: ExtractionMethod
    shortcode: str
    post_type: PostType = Field(alias="type")

    class Config:
        populate_by_name = True
