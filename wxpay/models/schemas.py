"""
数据模型 / 类型定义，供各模块引用。
使用 dataclass 与 Enum 保持轻量。
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class SignAlgorithm(str, Enum):
    MD5 = "MD5"
    HMAC_SHA256 = "HMAC-SHA256"


class TradeType(str, Enum):
    JSAPI = "JSAPI"
    NATIVE = "NATIVE"
    APP = "APP"
    H5 = "H5"


class PaymentType(str, Enum):
    """业务侧支付类型，由 TradeTypeMapper 映射到 trade_type。"""

    WECHAT_MINI_PROGRAM = "wechat_mini_program"
    WECHAT_OFFICIAL_ACCOUNT = "wechat_official_account"
    WECHAT_JSAPI = "wechat_jsapi"
    WECHAT_APP = "wechat_app"
    LEGACY_WECHAT_PAY = "legacy_wechat_pay"


class CertificateKind(str, Enum):
    CERT = "cert"
    KEY = "key"


@dataclass(frozen=True)
class Merchant:
    """商户配置。pem_cert / pem_key 可以是文件路径，也可以是 PEM 原文。"""

    mch_id: str
    api_key: str = ""
    pem_cert: Optional[str] = None
    pem_key: Optional[str] = None


@dataclass(frozen=True)
class MaterializedCertificate:
    path: Path
    content_hash: str
