"""路由模块导出集合。"""

from . import access, health, sharing

__all__ = [
    "access",
    "health",
    "sharing",
]
