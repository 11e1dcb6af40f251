"""
微信支付 V2 响应解析：统一下单、申请退款。

响应对象只能通过 from_xml 构造，构造后不可变：
- return_code != SUCCESS：通信失败，业务字段保持默认值
- result_code != SUCCESS：业务失败，错误码经映射表转为可读信息
- 否则成功，提取业务字段
"""

import json
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from wxpay.exceptions import ConfigurationError, ProtocolParseError
from wxpay.models.schemas import SignAlgorithm, TradeType
from wxpay.services import xml_codec
from wxpay.services.sign import SignatureService, coerce_algorithm, generate_nonce_str

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
DEFAULT_RETURN_MSG = "通信失败"

UNIFIED_ORDER_ERROR_MESSAGES = {
    "NOAUTH": "商户未开通此接口权限",
    "NOTENOUGH": "余额不足",
    "ORDERPAID": "商户订单已支付",
    "ORDERCLOSED": "订单已关闭",
    "SYSTEMERROR": "系统错误",
    "APPID_NOT_EXIST": "APPID不存在",
    "MCHID_NOT_EXIST": "商户号不存在",
    "APPID_MCHID_NOT_MATCH": "appid和mch_id不匹配",
    "LACK_PARAMS": "缺少参数",
    "OUT_TRADE_NO_USED": "商户订单号重复",
    "SIGNERROR": "签名错误",
    "XML_FORMAT_ERROR": "XML格式错误",
    "REQUIRE_POST_METHOD": "请使用post方法",
    "POST_DATA_EMPTY": "post数据为空",
    "NOT_UTF8": "编码格式错误",
}

REFUND_ERROR_MESSAGES = {
    "ORDERNOTEXIST": "此交易订单号不存在",
    "ORDERCLOSE": "订单已关闭",
    "NOAUTH": "商户无权限",
    "NOTENOUGH": "余额不足",
    "INVALID_REQ_TOO_MUCH": "无效请求过多",
    "BIZERR_NEED_RETRY": "退款业务流程错误，需要商户触发重试来解决",
    "TRADE_OVERDUE": "订单已经超过退款期限",
    "ERROR": "系统错误",
    "USER_ACCOUNT_ABNORMAL": "退款请求失败，用户账号异常",
    "INVALID_TRANSACTIONID": "无效transaction_id",
    "PARAM_ERROR": "参数错误",
    "APPID_NOT_EXIST": "APPID不存在",
    "MCHID_NOT_EXIST": "商户号不存在",
    "APPID_MCHID_NOT_MATCH": "appid和mch_id不匹配",
    "LACK_PARAMS": "缺少参数",
    "SIGNERROR": "签名错误",
    "XML_FORMAT_ERROR": "XML格式错误",
    "FREQUENCY_LIMITED": "频率限制",
    "REQUIRE_POST_METHOD": "请使用post方法",
    "POST_DATA_EMPTY": "post数据为空",
    "NOT_UTF8": "编码格式错误",
}


def parse_envelope(raw: str, context: str) -> dict:
    """
    解析响应/通知报文。

    Raises:
        ConfigurationError: 报文为空。
        ProtocolParseError: XML 格式错误（附带上下文）。
    """
    if not raw:
        raise ConfigurationError("empty response")
    try:
        return xml_codec.decode(raw)
    except ProtocolParseError as e:
        raise ProtocolParseError(f"{context}: {e}", e.diagnostics) from e


def field_str(data: Mapping, key: str, default: str = "") -> str:
    """取字符串字段；缺失或非标量（嵌套结构）时返回默认值。"""
    value = data.get(key)
    return value if isinstance(value, str) else default


def field_int(data: Mapping, key: str) -> int:
    """取整数字段；缺失或格式错误时返回 0。"""
    try:
        return int(field_str(data, key, "0") or "0")
    except ValueError:
        logger.warning("字段 %s 不是有效整数: %r", key, data.get(key))
        return 0


class _ResponseMixin:
    raw_fields: Mapping[str, Any]
    is_success: bool

    def verify_signature(
        self, key: str, algorithm: SignAlgorithm | str = SignAlgorithm.MD5
    ) -> bool:
        """
        验证响应签名。

        失败响应协议上不保证携带签名，直接返回 True；
        成功响应缺少 sign 时返回 False。
        """
        if not self.is_success:
            return True
        if not field_str(self.raw_fields, "sign"):
            return False
        return SignatureService().verify(dict(self.raw_fields), key, algorithm)

    def has_field(self, key: str) -> bool:
        return not xml_codec.is_empty(self.raw_fields.get(key))

    def validate_required_fields(self, fields: list[str]) -> list[str]:
        return [f for f in fields if not self.has_field(f)]


@dataclass(frozen=True)
class UnifiedOrderResponse(_ResponseMixin):
    """统一下单响应。"""

    raw_fields: Mapping[str, Any] = field(default_factory=dict)
    is_success: bool = False
    error_code: str = ""
    error_message: str = ""
    prepay_id: str = ""
    code_url: str = ""
    mweb_url: str = ""

    @classmethod
    def from_xml(cls, raw: str) -> "UnifiedOrderResponse":
        data = parse_envelope(raw, "unified order response XML parse failed")
        raw_fields = MappingProxyType(data)

        return_code = field_str(data, "return_code")
        if return_code != SUCCESS:
            return cls(
                raw_fields=raw_fields,
                error_code=return_code,
                error_message=field_str(data, "return_msg", DEFAULT_RETURN_MSG),
            )

        if field_str(data, "result_code") != SUCCESS:
            # 缺少 err_code 时使用 UNKNOWN_ERROR 作为错误码
            error_code = field_str(data, "err_code") or "UNKNOWN_ERROR"
            return cls(
                raw_fields=raw_fields,
                error_code=error_code,
                error_message=cls._map_error_message(error_code, field_str(data, "err_code_des")),
            )

        return cls(
            raw_fields=raw_fields,
            is_success=True,
            prepay_id=field_str(data, "prepay_id"),
            code_url=field_str(data, "code_url"),
            mweb_url=field_str(data, "mweb_url"),
        )

    @staticmethod
    def _map_error_message(error_code: str, original: str) -> str:
        mapped = UNIFIED_ORDER_ERROR_MESSAGES.get(error_code, "未知错误")
        if original and original != mapped:
            return f"{mapped}({original})"
        return mapped

    @property
    def app_id(self) -> str:
        return field_str(self.raw_fields, "appid")

    @property
    def mch_id(self) -> str:
        return field_str(self.raw_fields, "mch_id")

    @property
    def nonce_str(self) -> str:
        return field_str(self.raw_fields, "nonce_str")

    @property
    def sign(self) -> str:
        return field_str(self.raw_fields, "sign")

    @property
    def trade_type(self) -> str:
        return field_str(self.raw_fields, "trade_type")

    def _ensure_payable(self, channel: str) -> None:
        if not self.is_success or not self.prepay_id:
            raise ConfigurationError(
                f"response failed or prepay_id missing, cannot build {channel} pay params"
            )

    def _jsapi_style_params(self, key: str, algorithm: SignAlgorithm | str) -> dict[str, str]:
        sign_type = coerce_algorithm(algorithm).value
        params = {
            "appId": self.app_id,
            "timeStamp": str(int(time.time())),
            "nonceStr": generate_nonce_str(),
            "package": f"prepay_id={self.prepay_id}",
            "signType": sign_type,
        }
        params["paySign"] = SignatureService().generate(params, key, sign_type)
        return params

    def generate_mini_program_pay_params(
        self, key: str, algorithm: SignAlgorithm | str = SignAlgorithm.MD5
    ) -> dict[str, str]:
        """生成小程序 wx.requestPayment 所需参数（驼峰命名）。"""
        self._ensure_payable("mini program")
        return self._jsapi_style_params(key, algorithm)

    def generate_jsapi_pay_params(
        self, key: str, algorithm: SignAlgorithm | str = SignAlgorithm.MD5
    ) -> dict[str, str]:
        """生成公众号 WeixinJSBridge 所需参数（驼峰命名）。"""
        self._ensure_payable("JSAPI")
        return self._jsapi_style_params(key, algorithm)

    def generate_app_pay_params(
        self, key: str, algorithm: SignAlgorithm | str = SignAlgorithm.MD5
    ) -> dict[str, str]:
        """生成 APP 端 SDK 所需参数（全小写命名，签名字段为 sign）。"""
        self._ensure_payable("APP")
        params = {
            "appid": self.app_id,
            "partnerid": self.mch_id,
            "prepayid": self.prepay_id,
            "package": "Sign=WXPay",
            "noncestr": generate_nonce_str(),
            "timestamp": str(int(time.time())),
        }
        params["sign"] = SignatureService().generate(params, key, algorithm)
        return params

    def payment_info(self) -> dict[str, str]:
        info = {"prepay_id": self.prepay_id, "trade_type": self.trade_type}
        if self.trade_type == TradeType.NATIVE.value:
            info["code_url"] = self.code_url
        elif self.trade_type in (TradeType.H5.value, "MWEB"):
            info["mweb_url"] = self.mweb_url
        return info

    def debug_info(self) -> dict:
        return {
            "success": self.is_success,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "prepay_id": self.prepay_id,
            "code_url": self.code_url,
            "mweb_url": self.mweb_url,
            "raw_data": dict(self.raw_fields),
        }

    def to_json(self) -> str:
        return json.dumps({
            "success": self.is_success,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "data": {
                "prepay_id": self.prepay_id,
                "code_url": self.code_url,
                "mweb_url": self.mweb_url,
                "app_id": self.app_id,
                "mch_id": self.mch_id,
                "trade_type": self.trade_type,
            },
        }, ensure_ascii=False)


@dataclass(frozen=True)
class RefundResponse(_ResponseMixin):
    """申请退款响应。"""

    raw_fields: Mapping[str, Any] = field(default_factory=dict)
    is_success: bool = False
    error_code: str = ""
    error_message: str = ""
    refund_id: str = ""
    out_refund_no: str = ""
    refund_fee: int = 0
    settlement_refund_fee: int = 0
    total_fee: int = 0
    settlement_total_fee: int = 0
    fee_type: str = ""
    cash_fee: int = 0
    cash_fee_type: str = ""
    cash_refund_fee: int = 0
    coupon_refund_fee: int = 0
    coupon_refund_count: int = 0

    @classmethod
    def from_xml(cls, raw: str) -> "RefundResponse":
        data = parse_envelope(raw, "refund response XML parse failed")
        raw_fields = MappingProxyType(data)

        return_code = field_str(data, "return_code")
        if return_code != SUCCESS:
            return cls(
                raw_fields=raw_fields,
                error_code=return_code,
                error_message=field_str(data, "return_msg", DEFAULT_RETURN_MSG),
            )

        result_code = field_str(data, "result_code")
        if result_code != SUCCESS:
            # 缺少 err_code 时保留 result_code 作为错误码
            error_code = field_str(data, "err_code") or result_code
            error_message = REFUND_ERROR_MESSAGES.get(
                error_code, field_str(data, "err_code_des") or "业务失败"
            )
            return cls(
                raw_fields=raw_fields,
                error_code=error_code,
                error_message=error_message,
            )

        return cls(
            raw_fields=raw_fields,
            is_success=True,
            refund_id=field_str(data, "refund_id"),
            out_refund_no=field_str(data, "out_refund_no"),
            refund_fee=field_int(data, "refund_fee"),
            settlement_refund_fee=field_int(data, "settlement_refund_fee"),
            total_fee=field_int(data, "total_fee"),
            settlement_total_fee=field_int(data, "settlement_total_fee"),
            fee_type=field_str(data, "fee_type"),
            cash_fee=field_int(data, "cash_fee"),
            cash_fee_type=field_str(data, "cash_fee_type"),
            cash_refund_fee=field_int(data, "cash_refund_fee"),
            coupon_refund_fee=field_int(data, "coupon_refund_fee"),
            coupon_refund_count=field_int(data, "coupon_refund_count"),
        )

    def refund_info(self) -> dict:
        return {
            "refund_id": self.refund_id,
            "out_refund_no": self.out_refund_no,
            "refund_fee": self.refund_fee,
            "settlement_refund_fee": self.settlement_refund_fee,
            "total_fee": self.total_fee,
            "settlement_total_fee": self.settlement_total_fee,
            "fee_type": self.fee_type,
            "cash_fee": self.cash_fee,
            "cash_fee_type": self.cash_fee_type,
            "cash_refund_fee": self.cash_refund_fee,
            "coupon_refund_fee": self.coupon_refund_fee,
            "coupon_refund_count": self.coupon_refund_count,
        }
