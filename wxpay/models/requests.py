"""
微信支付 V2 请求：统一下单、申请退款。

请求对象为不可变 dataclass，通过关键字参数构造：
validate() 校验 → signed() 返回带签名的新实例 → to_xml() 生成报文。
ValidationError 中的字段名即构造参数名（而非报文字段名）。
"""

import dataclasses
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from wxpay.exceptions import ValidationError
from wxpay.models.schemas import PaymentType, SignAlgorithm, TradeType
from wxpay.services import xml_codec
from wxpay.services.sign import SignatureService, coerce_algorithm, generate_nonce_str
from wxpay.services.trade_type import TradeTypeMapper

WIRE_TIME_FORMAT = "%Y%m%d%H%M%S"


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(WIRE_TIME_FORMAT) if value else None


def _require(fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        if value is None or value == "":
            raise ValidationError(name, f"required field {name} must not be empty")


def _filter_empty(data: dict) -> dict:
    return {k: v for k, v in data.items() if not xml_codec.is_empty(v)}


class _SignableRequest:
    """请求公共行为：签名与 XML 序列化。"""

    def validate(self) -> None:
        raise NotImplementedError

    def to_wire_map(self) -> dict:
        raise NotImplementedError

    def signed(self, key: str, algorithm: SignAlgorithm | str | None = None):
        """校验后计算签名，返回携带 sign 的新请求对象。"""
        self.validate()
        algorithm = coerce_algorithm(algorithm or self.sign_type or SignAlgorithm.MD5)
        request = dataclasses.replace(self, sign_type=algorithm, sign="")
        sign = SignatureService().generate(request.to_wire_map(), key, algorithm)
        return dataclasses.replace(request, sign=sign)

    def to_xml(self) -> str:
        self.validate()
        return xml_codec.encode(self.to_wire_map(), xml_codec.ROOT_ELEMENT)


@dataclass(frozen=True)
class UnifiedOrderRequest(_SignableRequest):
    """
    统一下单请求，支持 JSAPI（小程序/公众号）、NATIVE、APP、H5。

    条件必填：JSAPI → open_id，NATIVE → product_id，H5 → scene_info。
    """

    REQUEST_PATH = "/pay/unifiedorder"

    app_id: str = ""
    mch_id: str = ""
    body: str = ""
    out_trade_no: str = ""
    total_fee: int = 0
    client_ip: str = ""
    notify_url: str = ""
    trade_type: TradeType | str = ""
    nonce_str: str = field(default_factory=generate_nonce_str)
    open_id: Optional[str] = None
    product_id: Optional[str] = None
    scene_info: Optional[dict] = None
    device_info: Optional[str] = None
    sign_type: SignAlgorithm | str | None = SignAlgorithm.MD5
    detail: Optional[str] = None
    attach: Optional[str] = None
    fee_type: Optional[str] = "CNY"
    time_start: Optional[datetime] = None
    time_expire: Optional[datetime] = None
    goods_tag: Optional[str] = None
    limit_pay: Optional[str] = None
    receipt: Optional[str] = None
    profit_sharing: Optional[bool] = None
    sign: str = ""

    @classmethod
    def for_payment_type(cls, payment_type: PaymentType | str, **kwargs) -> "UnifiedOrderRequest":
        """按业务支付类型推导 trade_type 后构造请求。"""
        trade_type = TradeTypeMapper().map_to_trade_type(payment_type)
        return cls(trade_type=trade_type, **kwargs)

    def validate(self) -> None:
        """
        校验必填参数、条件必填参数、金额和订单号长度。

        Raises:
            ValidationError: 任一规则不满足。
        """
        _require({
            "app_id": self.app_id,
            "mch_id": self.mch_id,
            "nonce_str": self.nonce_str,
            "body": self.body,
            "out_trade_no": self.out_trade_no,
        })
        if self.total_fee is None or self.total_fee <= 0:
            raise ValidationError("total_fee", "total_fee must be greater than 0")
        _require({
            "client_ip": self.client_ip,
            "notify_url": self.notify_url,
            "trade_type": self.trade_type,
        })

        try:
            trade_type = TradeType(self.trade_type)
        except ValueError:
            raise ValidationError("trade_type", f"unsupported trade_type: {self.trade_type}")

        if trade_type is TradeType.JSAPI and not self.open_id:
            raise ValidationError("open_id", "open_id must be provided for JSAPI")
        if trade_type is TradeType.NATIVE and not self.product_id:
            raise ValidationError("product_id", "product_id must be provided for NATIVE")
        if trade_type is TradeType.H5 and not self.scene_info:
            raise ValidationError("scene_info", "scene_info must be provided for H5")

        if len(self.out_trade_no) > 32:
            raise ValidationError("out_trade_no", "out_trade_no must not exceed 32 characters")

    def to_wire_map(self) -> dict:
        profit_sharing = None
        if self.profit_sharing is not None:
            profit_sharing = "Y" if self.profit_sharing else "N"

        return _filter_empty({
            "appid": self.app_id,
            "mch_id": self.mch_id,
            "device_info": self.device_info,
            "nonce_str": self.nonce_str,
            "sign_type": _enum_value(self.sign_type),
            "body": self.body,
            "detail": self.detail,
            "attach": self.attach,
            "out_trade_no": self.out_trade_no,
            "fee_type": self.fee_type,
            "total_fee": self.total_fee,
            "spbill_create_ip": self.client_ip,
            "time_start": _format_time(self.time_start),
            "time_expire": _format_time(self.time_expire),
            "goods_tag": self.goods_tag,
            "notify_url": self.notify_url,
            "trade_type": _enum_value(self.trade_type),
            "product_id": self.product_id,
            "limit_pay": self.limit_pay,
            "openid": self.open_id,
            "receipt": self.receipt,
            "profit_sharing": profit_sharing,
            "scene_info": self.scene_info,
            "sign": self.sign,
        })


@dataclass(frozen=True)
class RefundRequest(_SignableRequest):
    """
    申请退款请求。接口需要双向证书，证书由传输层通过 CertificateManager 提供。
    """

    REQUEST_PATH = "/secapi/pay/refund"

    app_id: str = ""
    mch_id: str = ""
    out_refund_no: str = ""
    total_fee: int = 0
    refund_fee: int = 0
    nonce_str: str = field(default_factory=generate_nonce_str)
    out_trade_no: str = ""
    transaction_id: Optional[str] = None
    refund_desc: Optional[str] = None
    refund_account: Optional[str] = None
    notify_url: Optional[str] = None
    device_info: Optional[str] = None
    sign_type: SignAlgorithm | str | None = SignAlgorithm.MD5
    sign: str = ""

    @staticmethod
    def generate_refund_no() -> str:
        """生成退款单号：REFUND + YYYYMMDDHHMMSS + 6 位随机数。"""
        return "REFUND" + datetime.now().strftime(WIRE_TIME_FORMAT) + f"{random.randint(0, 999999):06d}"

    def validate(self) -> None:
        _require({
            "app_id": self.app_id,
            "mch_id": self.mch_id,
            "nonce_str": self.nonce_str,
            "out_refund_no": self.out_refund_no,
        })

        if not self.transaction_id and not self.out_trade_no:
            raise ValidationError(
                "transaction_id", "one of transaction_id or out_trade_no must be provided"
            )

        if self.total_fee is None or self.total_fee <= 0:
            raise ValidationError("total_fee", "total_fee must be greater than 0")
        if self.refund_fee is None or self.refund_fee <= 0:
            raise ValidationError("refund_fee", "refund_fee must be greater than 0")
        if self.refund_fee > self.total_fee:
            raise ValidationError("refund_fee", "refund_fee must not exceed total_fee")

        if len(self.out_refund_no) > 64:
            raise ValidationError("out_refund_no", "out_refund_no must not exceed 64 characters")
        if self.out_trade_no and len(self.out_trade_no) > 32:
            raise ValidationError("out_trade_no", "out_trade_no must not exceed 32 characters")

    def to_wire_map(self) -> dict:
        return _filter_empty({
            "appid": self.app_id,
            "mch_id": self.mch_id,
            "device_info": self.device_info,
            "nonce_str": self.nonce_str,
            "sign_type": _enum_value(self.sign_type),
            "transaction_id": self.transaction_id,
            "out_trade_no": self.out_trade_no,
            "out_refund_no": self.out_refund_no,
            "total_fee": self.total_fee,
            "refund_fee": self.refund_fee,
            "refund_desc": self.refund_desc,
            "refund_account": self.refund_account,
            "notify_url": self.notify_url,
            "sign": self.sign,
        })


def _enum_value(value):
    return getattr(value, "value", value)
