"""数据库连接和会话管理

Review note:
- 不再使用模块级 engine 单例：`Database` 在应用 lifespan 中显式构造，
  挂到 app.state 上，再注入到编排器 / 对账器，测试可独立构造。
- 消息内容、台账快照均以 JSON 文本存储。
"""
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi import Request
from pathlib import Path
from typing import AsyncGenerator


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite 默认不执行外键约束，级联删除依赖它
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """异步引擎 + 会话工厂"""

    def __init__(self, url: str, echo: bool = False):
        engine_kwargs = {"echo": echo}
        parsed = make_url(url)
        self.is_sqlite = parsed.get_backend_name() == "sqlite"
        self.sqlite_path = None
        if self.is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            # 内存库只能共享同一条连接
            if parsed.database in (None, "", ":memory:"):
                engine_kwargs["poolclass"] = StaticPool
            else:
                self.sqlite_path = Path(parsed.database)

        self.url = url
        self.engine = create_async_engine(url, **engine_kwargs)
        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    async def init_db(self) -> None:
        """初始化数据库表"""
        from app.models.base import Base
        from app.models import Chat, Message, ActiveGeneration, UserSettings  # noqa: F401

        if self.sqlite_path is not None:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_chat_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话的依赖注入函数"""
    db: Database = request.app.state.db
    async with db.session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
