from datetime import datetime

from pydantic import BaseModel, Field


class PillCountLog(BaseModel):
    timestamp: datetime | None = None
    image_file_name: str | None = None
    total_count: int = Field(ge=0)
    filtered_count: int | None = Field(default=None, ge=0)
    whole_pills: int | None = Field(default=None, ge=0)
    half_pills: int | None = Field(default=None, ge=0)
    fragments: int | None = Field(default=None, ge=0)
    predictions: list[dict] = []
