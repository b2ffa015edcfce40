"""记录共享管理接口：共享明细、手工共享与管理员重算。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_sharing.db.session import get_db
from crm_sharing.dependencies import RequestContext, get_request_context
from crm_sharing.errors import PermissionDenied, SharingRuleNotFound
from crm_sharing.models.enums import AccessLevel
from crm_sharing.models.sharing import SharingRule
from crm_sharing.schemas.common import ErrorResponse, SuccessResponse
from crm_sharing.schemas.responses import (
    ManualShareData,
    ManualShareDeleteData,
    RecordRecalculationData,
    RecordShareListData,
    RuleRecalculationData,
)
from crm_sharing.schemas.sharing import ManualShareCreateRequest
from crm_sharing.services import (
    create_manual_share,
    delete_manual_share,
    get_object_permissions,
    get_record_shares,
    get_share_model,
    recalculate_record_shares,
    recalculate_rule_shares,
    require_record_access,
)
from crm_sharing.utils.response import batch_meta, success

router = APIRouter(prefix="/sharing", tags=["sharing"])

_ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _ensure_modify_all(db: Session, ctx: RequestContext, object_name: str) -> None:
    """管理员重算接口要求对象上的修改全部权限。"""
    permissions = get_object_permissions(
        db, tenant_id=ctx.tenant_id, user_id=ctx.user_id, object_name=object_name
    )
    if not permissions.modify_all:
        raise PermissionDenied("modify all permission required", object_name=object_name)


@router.get(
    "/objects/{object_name}/records/{record_id}/shares",
    summary="查询记录共享明细",
    description="列出记录的全部有效共享行及主体名称，需要对记录至少可读。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RecordShareListData],
    responses=_ERROR_RESPONSES,
)
def list_record_shares(
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    record_id: UUID = Path(..., description="记录 ID。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """查询记录共享明细。"""
    get_share_model(object_name)
    require_record_access(
        db, tenant_id=ctx.tenant_id, user_id=ctx.user_id, object_name=object_name, record_id=record_id
    )
    shares = get_record_shares(db, tenant_id=ctx.tenant_id, object_name=object_name, record_id=record_id)
    return success(
        request,
        {
            "object_name": object_name,
            "record_id": record_id,
            "shares": shares,
        },
        meta={"total": len(shares)},
    )


@router.post(
    "/objects/{object_name}/records/{record_id}/shares",
    summary="新增手工共享",
    description="把记录以指定访问级别手工共享给用户、角色或公共组，需要对记录可读写。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ManualShareData],
    responses=_ERROR_RESPONSES,
)
def create_record_share(
    payload: ManualShareCreateRequest,
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    record_id: UUID = Path(..., description="记录 ID。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """新增或更新手工共享。"""
    get_share_model(object_name)
    require_record_access(
        db,
        tenant_id=ctx.tenant_id,
        user_id=ctx.user_id,
        object_name=object_name,
        record_id=record_id,
        required_access=AccessLevel.READ_WRITE,
    )
    share = create_manual_share(
        db,
        tenant_id=ctx.tenant_id,
        object_name=object_name,
        record_id=record_id,
        subject_type=payload.subject_type,
        subject_id=payload.subject_id,
        access_level=payload.access_level,
        created_by=ctx.user_id,
    )
    db.commit()
    return success(
        request,
        {
            "id": share.id,
            "record_id": record_id,
            "subject_type": share.subject_type,
            "subject_id": share.subject_id,
            "access_level": share.access_level,
            "row_cause": share.row_cause,
        },
    )


@router.delete(
    "/objects/{object_name}/records/{record_id}/shares/{subject_type}/{subject_id}",
    summary="删除手工共享",
    description="逻辑删除指定主体的手工共享行，派生共享行不受影响。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ManualShareDeleteData],
    responses=_ERROR_RESPONSES,
)
def delete_record_share(
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    record_id: UUID = Path(..., description="记录 ID。"),
    subject_type: str = Path(..., pattern="^(User|Role|Group)$", description="授权主体类型。"),
    subject_id: UUID = Path(..., description="授权主体 ID。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """删除手工共享。"""
    get_share_model(object_name)
    require_record_access(
        db,
        tenant_id=ctx.tenant_id,
        user_id=ctx.user_id,
        object_name=object_name,
        record_id=record_id,
        required_access=AccessLevel.READ_WRITE,
    )
    deleted = delete_manual_share(
        db,
        tenant_id=ctx.tenant_id,
        object_name=object_name,
        record_id=record_id,
        subject_type=subject_type,
        subject_id=subject_id,
    )
    db.commit()
    return success(
        request,
        {
            "record_id": record_id,
            "subject_type": subject_type,
            "subject_id": subject_id,
            "deleted": deleted,
        },
    )


@router.post(
    "/objects/{object_name}/records/{record_id}/recalculate",
    summary="重算记录共享",
    description="重新生成记录的角色层级与规则共享行，所有者与手工共享保持不变。需要对象修改全部权限。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RecordRecalculationData],
    responses=_ERROR_RESPONSES,
)
def recalculate_record(
    request: Request,
    object_name: str = Path(..., description="对象名称，例如 Account。"),
    record_id: UUID = Path(..., description="记录 ID。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """重算单条记录共享。"""
    get_share_model(object_name)
    _ensure_modify_all(db, ctx, object_name)
    result = recalculate_record_shares(
        db,
        tenant_id=ctx.tenant_id,
        object_name=object_name,
        record_id=record_id,
        created_by=ctx.user_id,
    )
    db.commit()
    return success(
        request,
        {
            "object_name": object_name,
            "record_id": record_id,
            "shares_written": result.shares_written,
            "failures": result.failures,
        },
        meta=batch_meta(failures=result.failures),
    )


@router.post(
    "/rules/{rule_id}/recalculate",
    summary="重算共享规则",
    description="回收规则派生的全部共享行，规则启用时按对象全部记录重新应用。需要对象修改全部权限。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RuleRecalculationData],
    responses=_ERROR_RESPONSES,
)
def recalculate_rule(
    request: Request,
    rule_id: UUID = Path(..., description="共享规则 ID。"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """重算共享规则。"""
    object_name = db.execute(
        select(SharingRule.object_name)
        .where(SharingRule.tenant_id == ctx.tenant_id)
        .where(SharingRule.id == rule_id)
    ).scalar_one_or_none()
    if object_name is None:
        raise SharingRuleNotFound(f"sharing rule not found: {rule_id}", rule_id=str(rule_id))
    _ensure_modify_all(db, ctx, object_name)

    report = recalculate_rule_shares(db, tenant_id=ctx.tenant_id, rule_id=rule_id, created_by=ctx.user_id)
    db.commit()
    return success(
        request,
        {
            "rule_id": report.rule_id,
            "processed": report.processed,
            "shares_written": report.shares_written,
            "cancelled": report.cancelled,
            "failures": report.failures,
            "affected_record_ids": report.affected_record_ids,
        },
        meta=batch_meta(failures=report.failures, cancelled=report.cancelled),
    )
