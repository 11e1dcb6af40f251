"""
证书管理服务：将商户证书/私钥解析为 HTTP 客户端可用的文件路径。

- 传入值不含换行且文件存在 → 视为路径，原样返回
- 否则视为 PEM 原文，按内容哈希落盘为 wechat_<cert|key>_<hash>.pem
- 相同内容重复调用复用同一文件，不重复写入；内容漂移时重写
- 文件权限仅限属主读写（0600）
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

from wxpay.exceptions import ConfigurationError
from wxpay.models.schemas import CertificateKind, MaterializedCertificate, Merchant

logger = logging.getLogger(__name__)

MaterialProvider = Callable[[], Optional[str]]


def content_hash(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


class CertificateCache:
    """按内容哈希缓存证书文件的目录，默认使用系统临时目录。"""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory) if directory else Path(tempfile.gettempdir())

    def path_for(self, kind: CertificateKind, digest: str) -> Path:
        return self.directory / f"wechat_{kind.value}_{digest}.pem"

    def get(self, kind: CertificateKind, content: str) -> Path | None:
        """文件存在且内容一致时返回路径，否则返回 None。"""
        path = self.path_for(kind, content_hash(content))
        try:
            if path.read_bytes() == content.encode("utf-8"):
                return path
        except OSError:
            pass
        return None

    def put(self, kind: CertificateKind, content: str) -> MaterializedCertificate:
        """
        原子写入证书文件：同目录下创建 0600 临时文件，写完后 os.replace。

        Raises:
            ConfigurationError: 写入失败。
        """
        digest = content_hash(content)
        path = self.path_for(kind, digest)
        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # mkstemp 创建的文件默认即为 0600
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".wechat_{kind.value}_", suffix=".tmp", dir=self.directory
            )
            with os.fdopen(fd, "wb") as f:
                f.write(content.encode("utf-8"))
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path:
                Path(tmp_path).unlink(missing_ok=True)
            raise ConfigurationError(f"failed to write {kind.value} temp file: {e}") from e

        logger.info("证书文件已写入: kind=%s, path=%s", kind.value, path)
        return MaterializedCertificate(path=path, content_hash=digest)


class CertificateManager:
    """
    证书管理器。

    商户自身配置优先，其次使用构造时传入的默认值提供函数
    （通常来自 WechatPayConfig），不读取进程环境变量。
    """

    def __init__(
        self,
        cache: CertificateCache | None = None,
        default_cert: MaterialProvider | None = None,
        default_key: MaterialProvider | None = None,
    ):
        self.cache = cache or CertificateCache()
        self._default_cert = default_cert
        self._default_key = default_key

    @classmethod
    def from_config(cls, config, cache: CertificateCache | None = None) -> "CertificateManager":
        return cls(
            cache=cache,
            default_cert=lambda: config.cert_path,
            default_key=lambda: config.key_path,
        )

    def resolve_cert_path(self, merchant: Merchant | None = None) -> str:
        content = self._material(
            merchant.pem_cert if merchant else None, self._default_cert
        )
        return self._resolve(content, CertificateKind.CERT)

    def resolve_key_path(self, merchant: Merchant | None = None) -> str:
        content = self._material(
            merchant.pem_key if merchant else None, self._default_key
        )
        return self._resolve(content, CertificateKind.KEY)

    @staticmethod
    def _material(value: str | None, provider: MaterialProvider | None) -> str:
        if value is not None:
            return value
        if provider is not None:
            return provider() or ""
        return ""

    def _resolve(self, content: str, kind: CertificateKind) -> str:
        if content == "":
            return ""

        if "\n" not in content and os.path.exists(content):
            return content

        cached = self.cache.get(kind, content)
        if cached is not None:
            return str(cached)

        return str(self.cache.put(kind, content).path)
