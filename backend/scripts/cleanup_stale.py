"""一次性对账过期生成（供 cron 调用）。

Review note:
- 与服务内的周期任务使用同一个 StaleReconciler，可与服务同时运行：
  条件删除保证同一行只会被处理一次。
"""
import asyncio
import sys
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import settings
from app.database import Database
from app.services.crypto import build_cipher
from app.services.generation.reconciler import StaleReconciler
from app.services.persistence import PersistenceGateway


async def cleanup_stale():
    db = Database(settings.DATABASE_URL)
    try:
        await db.init_db()
        gateway = PersistenceGateway(db.session_maker, build_cipher(settings.CONTENT_ENCRYPTION_KEY))
        reconciler = StaleReconciler(
            db.session_maker,
            gateway,
            stale_threshold_sec=settings.STALE_GENERATION_THRESHOLD_SEC,
            retention_sec=settings.LEDGER_RETENTION_SEC,
        )
        return await reconciler.run_once()
    finally:
        await db.dispose()


if __name__ == "__main__":
    print("=" * 60)
    print("🧹 对账过期生成")
    print("=" * 60)

    report = asyncio.run(cleanup_stale())

    print(f"\n✅ 恢复消息: {report.recovered}")
    print(f"   无内容删除: {report.discarded}")
    print(f"   已被处理: {report.skipped}")
    print(f"   失败: {report.failed}")
    print(f"   清理过期行: {report.purged}")
