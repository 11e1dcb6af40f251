"""
微信支付配置：基础配置、证书配置、网络配置、日志配置。

from_env() 先通过 python-dotenv 加载当前工作目录（逐级向上查找）的 .env，再读取 WECHAT_PAY_* 环境变量。
cert_path / key_path 既可以是文件路径，也可以是 PEM 原文，
由 CertificateManager 统一解析为路径。
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import httpx
from dotenv import find_dotenv, load_dotenv

from wxpay.exceptions import ConfigurationError
from wxpay.models.schemas import SignAlgorithm

DEFAULT_BASE_URL = "https://api.mch.weixin.qq.com"
SUPPORTED_FEE_TYPES = ("CNY",)
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _looks_like_path(value: str) -> bool:
    return "\n" not in value and "-----BEGIN" not in value


@dataclass
class WechatPayConfig:
    app_id: str = ""
    mch_id: str = ""
    key: str = ""
    sign_type: str = SignAlgorithm.MD5.value
    fee_type: str = "CNY"
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    ca_cert_path: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    timeout: int = 30
    connect_timeout: int = 10
    retry_times: int = 3
    debug: bool = False
    log_path: Optional[str] = None
    default_headers: dict = field(default_factory=lambda: {
        "User-Agent": "wxpay-v2/1.0",
        "Content-Type": "application/xml; charset=utf-8",
    })

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")

    @classmethod
    def from_env(cls) -> "WechatPayConfig":
        """从 .env 与环境变量构造配置。"""
        load_dotenv(find_dotenv(usecwd=True))
        return cls(
            app_id=os.getenv("WECHAT_PAY_APP_ID", ""),
            mch_id=os.getenv("WECHAT_PAY_MCH_ID", ""),
            key=os.getenv("WECHAT_PAY_KEY", ""),
            sign_type=os.getenv("WECHAT_PAY_SIGN_TYPE", SignAlgorithm.MD5.value),
            fee_type=os.getenv("WECHAT_PAY_FEE_TYPE", "CNY"),
            cert_path=os.getenv("WECHAT_PAY_CERT") or None,
            key_path=os.getenv("WECHAT_PAY_SSL_KEY") or None,
            ca_cert_path=os.getenv("WECHAT_PAY_CA_CERT") or None,
            base_url=os.getenv("WECHAT_PAY_BASE_URL", DEFAULT_BASE_URL),
            timeout=_env_int("WECHAT_PAY_TIMEOUT", 30),
            connect_timeout=_env_int("WECHAT_PAY_CONNECT_TIMEOUT", 10),
            retry_times=_env_int("WECHAT_PAY_RETRY_TIMES", 3),
            debug=os.getenv("WECHAT_PAY_DEBUG", "0").strip().lower() in _TRUE_VALUES,
            log_path=os.getenv("WECHAT_PAY_LOG_PATH") or None,
        )

    @classmethod
    def from_mapping(cls, data: dict) -> "WechatPayConfig":
        """从字典构造配置，未知键忽略。"""
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})

    def validate(self) -> None:
        """
        校验配置完整性。

        Raises:
            ConfigurationError: 必填项缺失或取值非法。
        """
        for name in ("app_id", "mch_id", "key"):
            if not getattr(self, name):
                raise ConfigurationError(f"required config {name} must not be empty")

        if self.sign_type not in [a.value for a in SignAlgorithm]:
            raise ConfigurationError(f"unsupported sign type: {self.sign_type}")

        if self.fee_type not in SUPPORTED_FEE_TYPES:
            raise ConfigurationError(f"unsupported fee type: {self.fee_type}")

        if self.timeout <= 0 or self.connect_timeout <= 0:
            raise ConfigurationError("timeout must be greater than 0")

        if self.retry_times < 0:
            raise ConfigurationError("retry_times must not be negative")

        for label, value in (
            ("certificate file", self.cert_path),
            ("key file", self.key_path),
            ("CA certificate file", self.ca_cert_path),
        ):
            if value and _looks_like_path(value) and not os.path.exists(value):
                raise ConfigurationError(f"{label} does not exist: {value}")

    def needs_certificate(self) -> bool:
        return bool(self.cert_path) and bool(self.key_path)

    def http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, connect=self.connect_timeout)


def configure_logging(config: WechatPayConfig) -> None:
    """
    日志配置：沿用 basicConfig 格式，debug 时输出 DEBUG 级别，
    配置 log_path 时额外写入文件。
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_path:
        handlers.append(logging.FileHandler(config.log_path, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
