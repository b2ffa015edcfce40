"""请求上下文依赖。

职责:
1. 解析并校验访问令牌。
2. 令牌 `sub` 即本地用户 ID，`tenant_id` 声明即租户上下文。
3. 生成后续路由统一使用的 RequestContext。
"""

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from crm_sharing.core.security import UNAUTHORIZED, AuthenticatedPrincipal, parse_authorization_header

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class RequestContext:
    """请求上下文。"""

    # 当前请求用户 ID。
    user_id: UUID
    # 当前请求租户 ID。
    tenant_id: UUID
    # 认证主体原始信息（来自 JWT）。
    principal: AuthenticatedPrincipal


def _extract_tenant_id_from_claims(principal: AuthenticatedPrincipal) -> UUID | None:
    """从认证声明中提取租户上下文。"""
    for key in ("tenant_id", "tid"):
        value = principal.claims.get(key)
        if not isinstance(value, str):
            continue
        try:
            return UUID(value)
        except ValueError:
            continue
    return None


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedPrincipal:
    """提取并解析当前请求认证主体。"""
    authorization = None
    if credentials is not None and credentials.credentials:
        authorization = f"{credentials.scheme} {credentials.credentials}"
    return parse_authorization_header(authorization)


def get_request_context(principal: AuthenticatedPrincipal = Depends(get_current_principal)) -> RequestContext:
    """构造请求上下文；用户是否存在且启用由服务层在解析权限上下文时校验。"""
    try:
        user_id = UUID(principal.subject)
    except ValueError as exc:
        raise UNAUTHORIZED from exc

    tenant_id = _extract_tenant_id_from_claims(principal)
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={
                "code": "TENANT_CONTEXT_REQUIRED",
                "message": "缺少租户上下文。",
                "details": {
                    "reason": "missing_tenant_context",
                    "suggestion": "请使用携带 tenant_id 声明的访问令牌重试。",
                },
            },
        )
    return RequestContext(user_id=user_id, tenant_id=tenant_id, principal=principal)
