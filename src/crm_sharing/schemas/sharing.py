"""访问判定与共享相关请求结构。"""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class RecordFilterRequest(BaseModel):
    """批量过滤可访问记录请求体。"""

    record_ids: list[UUID] = Field(max_length=1000, description="待判定的记录 ID 列表。")
    required_access: Literal["Read", "ReadWrite"] = Field(
        default="Read",
        description="要求的最低访问级别。",
        examples=["Read"],
    )


class ManualShareCreateRequest(BaseModel):
    """手工共享请求体。"""

    subject_type: Literal["User", "Role", "Group"] = Field(description="授权主体类型。", examples=["User"])
    subject_id: UUID = Field(description="授权主体 ID。")
    access_level: Literal["Read", "ReadWrite"] = Field(description="授予的访问级别。", examples=["Read"])
