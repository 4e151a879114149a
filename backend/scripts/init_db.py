"""初始化数据库（建表）。"""
import asyncio
import sys
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import settings
from app.database import Database


async def init():
    db = Database(settings.DATABASE_URL)
    try:
        await db.init_db()
    finally:
        await db.dispose()


if __name__ == "__main__":
    print("=" * 60)
    print("🚀 Cracker Chat - 初始化数据库")
    print("=" * 60)

    asyncio.run(init())

    print(f"\n✅ 已初始化: {settings.DATABASE_URL}")
    print("   运行命令: uvicorn app.main:app --reload --port 8000")
