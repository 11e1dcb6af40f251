"""
微信支付 V2 异步通知解析：支付结果通知、退款结果通知。

退款结果通知的 req_info 为加密字段：
1. Base64 解码
2. 以商户 API 密钥 MD5（32 位小写）作为 AES-256-ECB 密钥解密，PKCS#7 去填充
3. 明文为 XML，再经 xml_codec 解码
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from wxpay.exceptions import ConfigurationError, ProtocolParseError
from wxpay.models.responses import SUCCESS, field_int, field_str, parse_envelope
from wxpay.models.schemas import SignAlgorithm
from wxpay.services import xml_codec
from wxpay.services.sign import SignatureService

logger = logging.getLogger(__name__)


def build_notify_reply(success: bool, message: str = "OK") -> str:
    """构建回复微信服务器的通知应答 XML。"""
    return xml_codec.encode({
        "return_code": SUCCESS if success else "FAIL",
        "return_msg": message,
    })


def refund_cipher_key(api_key: str) -> bytes:
    return hashlib.md5(api_key.encode("utf-8")).hexdigest().encode("ascii")


def decrypt_req_info(req_info: str, api_key: str) -> dict:
    """
    解密退款通知的 req_info 字段。

    Raises:
        ConfigurationError: API 密钥为空。
        ProtocolParseError: Base64、填充或明文 XML 无效。
    """
    if not api_key:
        raise ConfigurationError("merchant key must not be empty")
    try:
        ciphertext = base64.b64decode(req_info, validate=True)
        cipher = AES.new(refund_cipher_key(api_key), AES.MODE_ECB)
        plaintext = unpad(cipher.decrypt(ciphertext), AES.block_size)
        xml = plaintext.decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise ProtocolParseError(f"req_info decrypt failed: {e}", str(e)) from e

    try:
        return xml_codec.decode(xml)
    except ProtocolParseError as e:
        raise ProtocolParseError(f"req_info XML parse failed: {e}", e.diagnostics) from e


@dataclass(frozen=True)
class PayNotification:
    """支付结果通知。"""

    raw_fields: Mapping[str, Any] = field(default_factory=dict)
    is_success: bool = False
    out_trade_no: str = ""
    transaction_id: str = ""
    open_id: str = ""
    trade_type: str = ""
    bank_type: str = ""
    total_fee: int = 0
    cash_fee: int = 0
    time_end: str = ""
    attach: str = ""

    @classmethod
    def from_xml(cls, raw: str) -> "PayNotification":
        data = parse_envelope(raw, "pay notification XML parse failed")
        return cls(
            raw_fields=MappingProxyType(data),
            is_success=(
                field_str(data, "return_code") == SUCCESS
                and field_str(data, "result_code") == SUCCESS
            ),
            out_trade_no=field_str(data, "out_trade_no"),
            transaction_id=field_str(data, "transaction_id"),
            open_id=field_str(data, "openid"),
            trade_type=field_str(data, "trade_type"),
            bank_type=field_str(data, "bank_type"),
            total_fee=field_int(data, "total_fee"),
            cash_fee=field_int(data, "cash_fee"),
            time_end=field_str(data, "time_end"),
            attach=field_str(data, "attach"),
        )

    def verify_signature(
        self, key: str, algorithm: SignAlgorithm | str | None = None
    ) -> bool:
        """
        通知总是带签名，缺少 sign 直接视为验签失败。

        未指定签名类型时使用通知中的 sign_type（缺省 MD5），类型不支持时返回 False。
        """
        if not field_str(self.raw_fields, "sign"):
            logger.warning("支付通知缺少签名 (out_trade_no=%s)", self.out_trade_no)
            return False
        service = SignatureService()
        if algorithm is None:
            algorithm = field_str(self.raw_fields, "sign_type") or SignAlgorithm.MD5.value
            # sign_type 来自通知方，不支持的类型按验签失败处理
            if not service.is_sign_type_supported(algorithm):
                logger.warning(
                    "支付通知签名类型不支持 (out_trade_no=%s, sign_type=%s)",
                    self.out_trade_no, algorithm,
                )
                return False
        return service.verify(dict(self.raw_fields), key, algorithm)


@dataclass(frozen=True)
class RefundNotification:
    """退款结果通知，业务字段来自解密后的 req_info。"""

    raw_fields: Mapping[str, Any] = field(default_factory=dict)
    refund_fields: Mapping[str, Any] = field(default_factory=dict)
    return_code: str = ""
    return_msg: str = ""
    transaction_id: str = ""
    out_trade_no: str = ""
    refund_id: str = ""
    out_refund_no: str = ""
    refund_status: str = ""
    total_fee: int = 0
    refund_fee: int = 0
    settlement_refund_fee: int = 0
    success_time: str = ""
    refund_recv_account: str = ""
    refund_account: str = ""
    refund_request_source: str = ""

    @property
    def is_success(self) -> bool:
        return self.return_code == SUCCESS and self.refund_status == SUCCESS

    @classmethod
    def from_xml(cls, raw: str, api_key: str) -> "RefundNotification":
        data = parse_envelope(raw, "refund notification XML parse failed")
        return_code = field_str(data, "return_code")
        if return_code != SUCCESS:
            return cls(
                raw_fields=MappingProxyType(data),
                return_code=return_code,
                return_msg=field_str(data, "return_msg"),
            )

        req_info = field_str(data, "req_info")
        if not req_info:
            raise ProtocolParseError("refund notification missing req_info")

        refund = decrypt_req_info(req_info, api_key)
        return cls(
            raw_fields=MappingProxyType(data),
            refund_fields=MappingProxyType(refund),
            return_code=return_code,
            return_msg=field_str(data, "return_msg"),
            transaction_id=field_str(refund, "transaction_id"),
            out_trade_no=field_str(refund, "out_trade_no"),
            refund_id=field_str(refund, "refund_id"),
            out_refund_no=field_str(refund, "out_refund_no"),
            refund_status=field_str(refund, "refund_status"),
            total_fee=field_int(refund, "total_fee"),
            refund_fee=field_int(refund, "refund_fee"),
            settlement_refund_fee=field_int(refund, "settlement_refund_fee"),
            success_time=field_str(refund, "success_time"),
            # 协议字段名本身拼写为 refund_recv_accout
            refund_recv_account=field_str(refund, "refund_recv_accout"),
            refund_account=field_str(refund, "refund_account"),
            refund_request_source=field_str(refund, "refund_request_source"),
        )
