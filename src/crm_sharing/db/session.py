"""数据库引擎与请求级会话。

服务层只 flush 不提交，提交由路由层负责；请求处理抛出异常时在这里回滚，
保存点之外已 flush 的共享行不会残留在连接上。
"""

from collections.abc import Generator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from crm_sharing.core.config import Settings, get_settings

logger = logging.getLogger("crm_sharing.api")


def build_engine(settings: Settings, database_url: str | None = None) -> Engine:
    """按配置创建引擎；连接池参数只对非 SQLite 驱动生效。"""
    url = make_url(database_url or settings.database_url)
    options: dict[str, object] = {"future": True, "pool_pre_ping": True, "echo": settings.database_echo}
    if url.get_backend_name() != "sqlite":
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return create_engine(url, **options)


engine = build_engine(get_settings())
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """为每个请求提供独立会话，异常时回滚未提交的写入。"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            logger.warning("request failed, rolling back uncommitted share writes")
            db.rollback()
        raise
    finally:
        db.close()
