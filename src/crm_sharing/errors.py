"""共享计算领域异常。

服务层只抛出这里定义的异常，由 `exceptions.py` 统一转换为标准错误响应。
"""

from typing import Any

from fastapi import status


class SharingEngineError(Exception):
    """领域异常基类，携带机器可识别错误码与建议状态码。"""

    code = "SHARING_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UserNotFound(SharingEngineError):
    """用户不存在或已停用。"""

    code = "USER_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class UnsupportedObject(SharingEngineError):
    """对象未配置共享表映射，属于配置错误。"""

    code = "UNSUPPORTED_OBJECT"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT


class SharingRuleNotFound(SharingEngineError):
    """共享规则不存在。"""

    code = "SHARING_RULE_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidFilterCriteria(SharingEngineError):
    """条件规则引用了对象上不存在的字段。"""

    code = "INVALID_FILTER_CRITERIA"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT


class RecordNotFound(SharingEngineError):
    """业务记录不存在或已删除。"""

    code = "RECORD_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(SharingEngineError):
    """当前用户无权执行该操作。"""

    code = "INSUFFICIENT_PRIVILEGES"
    status_code = status.HTTP_403_FORBIDDEN


class RoleHierarchyCycle(SharingEngineError):
    """角色父子关系调整会形成环。"""

    code = "ROLE_HIERARCHY_CYCLE"
    status_code = status.HTTP_409_CONFLICT


class InvalidShareRequest(SharingEngineError):
    """手工共享请求参数不合法。"""

    code = "INVALID_SHARE_REQUEST"
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
