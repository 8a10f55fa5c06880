from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class KeywordGroupIn(BaseModel):
    name: str = Field(min_length=1)
    campaign_name: str | None = None
    campaign_type: str | None = None
    is_default: bool = False


class KeywordGroupUpdate(BaseModel):
    name: str | None = None
    campaign_name: str | None = None
    campaign_type: str | None = None
    is_default: bool | None = None


class KeywordGroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    campaign_name: str | None
    campaign_type: str | None
    is_default: bool
    created_at: datetime


class KeywordIn(BaseModel):
    main_keyword: str = Field(min_length=1)
    mid: str | None = None
    url: str | None = None
    keyword1: str | None = None
    keyword2: str | None = None
    keyword3: str | None = None
    description: str | None = None
    is_active: bool = True


class KeywordUpdate(BaseModel):
    group_id: int | None = None
    main_keyword: str | None = None
    mid: str | None = None
    url: str | None = None
    keyword1: str | None = None
    keyword2: str | None = None
    keyword3: str | None = None
    description: str | None = None
    is_active: bool | None = None


class KeywordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    main_keyword: str
    mid: str | None
    url: str | None
    keyword1: str | None
    keyword2: str | None
    keyword3: str | None
    description: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime
