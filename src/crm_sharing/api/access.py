"""运行时访问判定接口（无副作用，供前端与其他服务鉴权使用）。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.orm import Session

from crm_sharing.db.session import get_db
from crm_sharing.dependencies import RequestContext, get_request_context
from crm_sharing.errors import RecordNotFound
from crm_sharing.models.enums import AccessLevel
from crm_sharing.schemas.common import ErrorResponse, SuccessResponse
from crm_sharing.schemas.responses import (
    FieldPermissionData,
    ObjectPermissionData,
    RecordAccessData,
    RecordFilterData,
)
from crm_sharing.schemas.sharing import RecordFilterRequest
from crm_sharing.services import (
    filter_accessible_records,
    get_field_permissions,
    get_object_descriptor,
    get_object_permissions,
    get_record_access,
    get_record_owner_id,
)
from crm_sharing.utils.response import success

router = APIRouter(prefix="/access/objects/{object_name}", tags=["access"])

_ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.get(
    "/permissions",
    summary="查询对象级有效权限",
    description="返回当前用户在对象上的 CRUD 与查看全部/修改全部权限（简档 + 权限集合并）。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ObjectPermissionData],
    responses=_ERROR_RESPONSES,
)
def read_object_permissions(
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """查询对象级有效权限。"""
    get_object_descriptor(object_name)
    permissions = get_object_permissions(
        db, tenant_id=ctx.tenant_id, user_id=ctx.user_id, object_name=object_name
    )
    return success(
        request,
        {
            "object_name": object_name,
            "can_create": permissions.can_create,
            "can_read": permissions.can_read,
            "can_update": permissions.can_update,
            "can_delete": permissions.can_delete,
            "view_all": permissions.view_all,
            "modify_all": permissions.modify_all,
        },
    )


@router.get(
    "/fields",
    summary="查询字段级有效权限",
    description="返回显式配置过的字段权限，未列出的字段按默认策略可读、不可编辑。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[FieldPermissionData],
    responses=_ERROR_RESPONSES,
)
def read_field_permissions(
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """查询字段级有效权限。"""
    get_object_descriptor(object_name)
    permissions = get_field_permissions(db, tenant_id=ctx.tenant_id, user_id=ctx.user_id, object_name=object_name)
    return success(
        request,
        {
            "object_name": object_name,
            "fields": [
                {
                    "field_name": item.field_name,
                    "is_readable": item.is_readable,
                    "is_editable": item.is_editable,
                }
                for _, item in sorted(permissions.items())
            ],
        },
    )


@router.get(
    "/records/{record_id}",
    summary="查询记录访问级别",
    description="按对象权限、组织默认、所有权、角色层级与共享行判定当前用户对记录的访问级别。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RecordAccessData],
    responses=_ERROR_RESPONSES,
)
def read_record_access(
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    record_id: UUID = Path(..., description="记录 ID。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """查询记录访问级别。"""
    if get_record_owner_id(db, tenant_id=ctx.tenant_id, object_name=object_name, record_id=record_id) is None:
        raise RecordNotFound(
            f"{object_name} record not found: {record_id}",
            object_name=object_name,
            record_id=str(record_id),
        )
    level = get_record_access(
        db, tenant_id=ctx.tenant_id, user_id=ctx.user_id, object_name=object_name, record_id=record_id
    )
    return success(request, {"object_name": object_name, "record_id": record_id, "access_level": level.value})


@router.post(
    "/records/filter",
    summary="批量过滤可访问记录",
    description="逐条判定记录访问级别，返回满足最低访问要求的记录 ID。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RecordFilterData],
    responses=_ERROR_RESPONSES,
)
def filter_records(
    payload: RecordFilterRequest,
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """批量过滤可访问记录。"""
    get_object_descriptor(object_name)
    record_ids = filter_accessible_records(
        db,
        tenant_id=ctx.tenant_id,
        user_id=ctx.user_id,
        object_name=object_name,
        record_ids=payload.record_ids,
        required_access=AccessLevel(payload.required_access),
    )
    return success(
        request,
        {
            "object_name": object_name,
            "required_access": payload.required_access,
            "record_ids": record_ids,
        },
        meta={"requested": len(payload.record_ids), "accessible": len(record_ids)},
    )
