"""健康检查接口。"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fastapi import APIRouter, Depends, HTTPException, Request, status

from crm_sharing.db.session import get_db
from crm_sharing.models import OrgWideDefault, PermissionProfile, PublicGroup, Role, SharingRule, User
from crm_sharing.schemas.common import ErrorResponse, SuccessResponse
from crm_sharing.schemas.responses import HealthStatusData
from crm_sharing.services.object_registry import OBJECT_REGISTRY, get_share_model, sharable_object_names
from crm_sharing.utils.response import success

logger = logging.getLogger("crm_sharing.api")

router = APIRouter(prefix="/health", tags=["health"])

# 访问判定每次都会读取的配置表。
_CONFIG_MODELS = (Role, User, PermissionProfile, OrgWideDefault, SharingRule, PublicGroup)


def _readiness_models() -> list[type]:
    models: list[type] = list(_CONFIG_MODELS)
    models.extend(descriptor.record_model for descriptor in OBJECT_REGISTRY.values())
    models.extend(get_share_model(name) for name in sharable_object_names())
    return models


@router.get(
    "/live",
    summary="存活探针",
    description="用于容器编排系统检测服务进程是否存活。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="逐表检查配置表、登记对象的记录表与共享表均可读取。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={503: {"model": ErrorResponse}},
)
def ready(request: Request, db: Session = Depends(get_db)):
    """任一表不可读（未迁移或无权限）即判定未就绪。"""
    checked: list[str] = []
    for model in _readiness_models():
        table_name = model.__tablename__
        try:
            db.execute(select(model.id).limit(1))
        except SQLAlchemyError as exc:
            logger.warning("readiness check failed table=%s error=%s", table_name, exc)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={
                    "code": "STORAGE_NOT_READY",
                    "message": "共享计算依赖的数据表不可用。",
                    "details": {"table": table_name},
                },
            ) from exc
        checked.append(table_name)
    return success(
        request,
        {"status": "ready", "tables": checked, "sharable_objects": sharable_object_names()},
    )
