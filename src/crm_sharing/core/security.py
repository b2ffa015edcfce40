"""认证解析与令牌校验工具。"""

from dataclasses import dataclass
import re
from typing import Any

import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError

from crm_sharing.core.config import get_settings

UNAUTHORIZED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="unauthorized",
)


@dataclass
class AuthenticatedPrincipal:
    """统一认证主体对象。"""

    # 主体标识（sub），即本地用户 ID。
    subject: str
    # 认证提供方（issuer）。
    provider: str
    # 原始声明集，便于下游扩展。
    claims: dict[str, Any]


def _decode_jwt(token: str) -> dict[str, Any]:
    """按配置解码并校验令牌。"""
    settings = get_settings()
    options = {"verify_signature": True, "verify_aud": bool(settings.auth_jwt_audience)}
    try:
        return jwt.decode(
            token,
            key=settings.auth_jwt_secret,
            algorithms=settings.auth_algorithms,
            issuer=settings.auth_jwt_issuer,
            audience=settings.auth_jwt_audience,
            leeway=settings.auth_jwt_leeway_seconds,
            options=options,
        )
    except InvalidTokenError as exc:
        raise UNAUTHORIZED from exc


def _extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise UNAUTHORIZED
    tokens = [item.strip() for item in re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)]
    tokens = [item for item in tokens if item]
    if not tokens:
        raise UNAUTHORIZED
    return tokens[-1]


def parse_authorization_header(authorization: str | None) -> AuthenticatedPrincipal:
    """解析认证头并返回认证主体。"""
    claims = _decode_jwt(_extract_bearer_token(authorization))

    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise UNAUTHORIZED

    provider = claims.get("provider")
    issuer = str(provider if isinstance(provider, str) and provider else (claims.get("iss") or "jwt"))
    return AuthenticatedPrincipal(subject=subject, provider=issuer, claims=claims)
