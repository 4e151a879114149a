"""消息内容的静态加密

Review note:
- 设置 CONTENT_ENCRYPTION_KEY（Fernet key）后落库内容以 "enc:" 前缀加密存储；
  未设置时明文存储。
- 解密时遇到无前缀的内容按明文返回，兼容开启加密之前写入的旧数据。
"""
from typing import Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

ENCRYPTED_PREFIX = "enc:"


class ContentDecryptError(ValueError):
    """密文无法用当前密钥解密"""


class ContentCipher(Protocol):
    def encrypt(self, text: str, chat_id: str) -> str: ...

    def decrypt(self, text: str, chat_id: str) -> str: ...


class PlaintextCipher:
    """不加密"""

    def encrypt(self, text: str, chat_id: str) -> str:
        return text

    def decrypt(self, text: str, chat_id: str) -> str:
        if text.startswith(ENCRYPTED_PREFIX):
            raise ContentDecryptError(f"chat {chat_id} 的内容已加密，但未配置 CONTENT_ENCRYPTION_KEY")
        return text


class FernetCipher:
    """Fernet 对称加密"""

    def __init__(self, key: str):
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, text: str, chat_id: str) -> str:
        token = self._fernet.encrypt(text.encode("utf-8")).decode("ascii")
        return ENCRYPTED_PREFIX + token

    def decrypt(self, text: str, chat_id: str) -> str:
        if not text.startswith(ENCRYPTED_PREFIX):
            return text
        try:
            return self._fernet.decrypt(text[len(ENCRYPTED_PREFIX):].encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ContentDecryptError(f"chat {chat_id} 的内容解密失败") from exc


def build_cipher(key: Optional[str]) -> ContentCipher:
    if key:
        return FernetCipher(key)
    return PlaintextCipher()
