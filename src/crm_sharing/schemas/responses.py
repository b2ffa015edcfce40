"""接口成功响应 `data` 字段结构定义。

说明：
1. 所有业务接口统一返回 `SuccessResponse[data=...]`。
2. 本文件专注于定义各接口在 `data` 中的业务字段。
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from crm_sharing.schemas.common import BaseSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")
    tables: list[str] | None = Field(default=None, description="就绪检查中已确认可读的数据表。")
    sharable_objects: list[str] | None = Field(default=None, description="配置了共享表的对象。")


class ObjectPermissionData(BaseSchema):
    """对象级有效权限。"""

    object_name: str = Field(description="对象名称。")
    can_create: bool = Field(description="是否可新建。")
    can_read: bool = Field(description="是否可读。")
    can_update: bool = Field(description="是否可更新。")
    can_delete: bool = Field(description="是否可删除。")
    view_all: bool = Field(description="是否可查看全部记录。")
    modify_all: bool = Field(description="是否可修改全部记录。")


class FieldPermissionItem(BaseSchema):
    """单字段有效权限。"""

    field_name: str = Field(description="字段名称。")
    is_readable: bool = Field(description="是否可读。")
    is_editable: bool = Field(description="是否可编辑。")


class FieldPermissionData(BaseSchema):
    """对象字段权限列表，仅包含显式配置过的字段。"""

    object_name: str = Field(description="对象名称。")
    fields: list[FieldPermissionItem] = Field(description="字段权限列表，未列出字段可读不可编辑。")


class RecordAccessData(BaseSchema):
    """记录访问级别。"""

    object_name: str = Field(description="对象名称。")
    record_id: UUID = Field(description="记录 ID。")
    access_level: str = Field(description="访问级别：None / Read / ReadWrite。")


class RecordFilterData(BaseSchema):
    """批量过滤结果。"""

    object_name: str = Field(description="对象名称。")
    required_access: str = Field(description="要求的最低访问级别。")
    record_ids: list[UUID] = Field(description="满足要求的记录 ID，保持请求顺序。")


class RecordShareItem(BaseSchema):
    """记录共享明细行。"""

    id: UUID = Field(description="共享行 ID。")
    subject_type: str = Field(description="授权主体类型。")
    subject_id: UUID = Field(description="授权主体 ID。")
    subject_name: str | None = Field(default=None, description="主体展示名。")
    access_level: str = Field(description="访问级别。")
    row_cause: str = Field(description="共享原因。")
    sharing_rule_id: UUID | None = Field(default=None, description="派生该行的共享规则 ID。")
    sharing_rule_name: str | None = Field(default=None, description="派生该行的共享规则名称。")
    created_at: datetime | None = Field(default=None, description="创建时间。")


class RecordShareListData(BaseSchema):
    """记录共享明细列表。"""

    object_name: str = Field(description="对象名称。")
    record_id: UUID = Field(description="记录 ID。")
    shares: list[RecordShareItem] = Field(description="有效共享行。")


class ManualShareData(BaseSchema):
    """手工共享写入结果。"""

    id: UUID = Field(description="共享行 ID。")
    record_id: UUID = Field(description="记录 ID。")
    subject_type: str = Field(description="授权主体类型。")
    subject_id: UUID = Field(description="授权主体 ID。")
    access_level: str = Field(description="访问级别。")
    row_cause: str = Field(description="共享原因，固定为 Manual。")


class ManualShareDeleteData(BaseSchema):
    """手工共享删除结果。"""

    record_id: UUID = Field(description="记录 ID。")
    subject_type: str = Field(description="授权主体类型。")
    subject_id: UUID = Field(description="授权主体 ID。")
    deleted: bool = Field(description="是否确有共享行被删除。")


class RuleFailureItem(BaseSchema):
    """规则应用失败明细。"""

    rule_id: UUID = Field(description="共享规则 ID。")
    record_id: UUID | None = Field(default=None, description="失败记录 ID，规则展开失败时为空。")
    error: str = Field(description="失败原因。")


class RecordRecalculationData(BaseSchema):
    """单记录共享重算结果。"""

    object_name: str = Field(description="对象名称。")
    record_id: UUID = Field(description="记录 ID。")
    shares_written: int = Field(description="写入的共享行数量。")
    failures: list[RuleFailureItem] = Field(description="失败的规则明细。")


class RuleRecalculationData(BaseSchema):
    """规则共享重算报告。"""

    rule_id: UUID = Field(description="共享规则 ID。")
    processed: int = Field(description="已处理记录数。")
    shares_written: int = Field(description="写入的共享行数量。")
    cancelled: bool = Field(description="是否被取消。")
    failures: list[RuleFailureItem] = Field(description="失败明细。")
    affected_record_ids: list[UUID] = Field(description="本次回收过规则共享行并已按记录重算的记录。")
