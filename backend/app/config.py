"""应用配置"""
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 应用信息
    APP_NAME: str = "Cracker Chat"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/chat.db"

    # CORS配置
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # 模型服务（OpenAI 兼容接口）
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    OPENAI_TIMEOUT_SEC: float = 120.0
    # 逗号分隔模型，分组用 ;，格式：Group:model1,model2;Group2:model3
    MODELS: str = "Gemini:gemini-3-pro-preview,gemini-3-flash-preview,gemini-2.5-flash;Image:gemini-2.5-flash-image"
    DEFAULT_MODEL: str = "gemini-3-flash-preview"
    # 标题生成 / 推理强度自动分类使用的轻量模型
    TITLE_MODEL: str = "gemini-2.5-flash"
    AUTO_REASONING_MODEL: str = "gemini-2.5-flash"

    # 外部工具凭据（缺失时对应能力自动关闭）
    BRAVE_API_KEY: str = ""
    YOUTUBE_API_KEY: str = ""
    TOOL_TIMEOUT_SEC: float = 20.0

    # 生成编排
    GENERATION_MAX_STEPS: int = 5
    GENERATION_TIMEOUT_SEC: float = 300.0
    CHECKPOINT_INTERVAL_SEC: float = 2.0

    # 生成台账对账
    STALE_GENERATION_THRESHOLD_SEC: float = 30.0
    RECONCILE_INTERVAL_SEC: float = 60.0
    LEDGER_RETENTION_SEC: float = 86400.0

    # 消息内容加密（Fernet key，留空则明文存储）
    CONTENT_ENCRYPTION_KEY: str = ""

    @model_validator(mode="before")
    @classmethod
    def treat_empty_env_as_unset(cls, data):
        """
        将空字符串环境变量按“未配置”处理。
        这样 .env 中留空不会覆盖默认值，也避免复杂类型解析报错。
        """
        if not isinstance(data, dict):
            return data

        cleaned = dict(data)
        for field_name, field in cls.model_fields.items():
            default = field.default

            # 仅当字段本身有可用默认值时，空字符串才回退到默认值
            if default in (None, ""):
                continue

            if cleaned.get(field_name) == "":
                cleaned.pop(field_name, None)

        return cleaned

    @property
    def cors_origins_list(self) -> List[str]:
        """获取CORS允许的源列表"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def models_grouped(self) -> List[dict]:
        """获取可选模型分组列表"""
        groups = []
        for group_chunk in self.MODELS.split(";"):
            chunk = group_chunk.strip()
            if not chunk:
                continue
            if ":" not in chunk:
                # 兜底：无分组名，放入默认组
                models = [m.strip() for m in chunk.split(",") if m.strip()]
                if models:
                    groups.append({"name": "Default", "models": models})
                continue
            name, models_str = chunk.split(":", 1)
            models = [m.strip() for m in models_str.split(",") if m.strip()]
            if models:
                groups.append({"name": name.strip(), "models": models})
        return groups

    @property
    def models_list(self) -> List[str]:
        """获取可选模型列表（扁平）"""
        flat = []
        for g in self.models_grouped:
            flat.extend(g["models"])
        return flat

    class Config:
        env_file = (".env", "backend/.env")
        case_sensitive = True
        extra = "ignore"


# 全局配置实例
settings = Settings()
