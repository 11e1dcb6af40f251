"""
支付类型映射器：PaymentType → trade_type，以及各交易类型的特殊参数。
"""

from wxpay.exceptions import ConfigurationError
from wxpay.models.schemas import PaymentType, TradeType

_PAYMENT_TYPE_MAPPING = {
    PaymentType.WECHAT_MINI_PROGRAM: TradeType.JSAPI,
    PaymentType.WECHAT_OFFICIAL_ACCOUNT: TradeType.JSAPI,
    PaymentType.WECHAT_JSAPI: TradeType.JSAPI,
    PaymentType.WECHAT_APP: TradeType.APP,
    PaymentType.LEGACY_WECHAT_PAY: TradeType.JSAPI,
}

# 各交易类型条件必填的报文字段
_REQUIRED_PARAMETERS = {
    TradeType.JSAPI: ["openid"],
    TradeType.NATIVE: ["product_id"],
    TradeType.H5: ["scene_info"],
    TradeType.APP: [],
}

_TRADE_TYPE_LABELS = {
    TradeType.JSAPI: "JSAPI支付(小程序/公众号)",
    TradeType.NATIVE: "Native支付(扫码)",
    TradeType.APP: "APP支付",
    TradeType.H5: "H5支付(手机网站)",
}


class TradeTypeMapper:
    """支付类型映射器。"""

    def map_to_trade_type(self, payment_type: PaymentType | str) -> TradeType:
        try:
            return _PAYMENT_TYPE_MAPPING[PaymentType(payment_type)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"unsupported payment type: {payment_type}")

    def required_parameters(self, trade_type: TradeType | str) -> list[str]:
        try:
            return list(_REQUIRED_PARAMETERS[TradeType(trade_type)])
        except ValueError:
            raise ConfigurationError(f"unsupported trade type: {trade_type}")

    def validate_parameters(self, payment_type: PaymentType | str, parameters: dict) -> list[str]:
        """返回 payment_type 对应交易类型缺失的必填报文字段。"""
        trade_type = self.map_to_trade_type(payment_type)
        return [
            p for p in self.required_parameters(trade_type)
            if parameters.get(p) is None or parameters.get(p) == ""
        ]

    def h5_scene_info(self, type_: str, app_name: str, bundle_id: str | None = None) -> dict:
        """
        H5 支付场景信息模板。

        Args:
            type_: 场景类型（IOS / Android / Wap）。
            app_name: 应用名称。
            bundle_id: iOS Bundle ID 或 Android 包名。
        """
        h5_info = {"type": type_, "app_name": app_name}
        if bundle_id is not None:
            if type_ == "IOS":
                h5_info["bundle_id"] = bundle_id
            elif type_ == "Android":
                h5_info["package_name"] = bundle_id
        return {"h5_info": h5_info}

    def wap_scene_info(self, wap_url: str, wap_name: str) -> dict:
        return {"h5_info": {"type": "Wap", "wap_url": wap_url, "wap_name": wap_name}}

    def recommend_h5_type(self, user_agent: str) -> str:
        ua = user_agent.lower()
        if "iphone" in ua or "ipad" in ua:
            return "IOS"
        if "android" in ua:
            return "Android"
        return "Wap"

    def is_payment_type_supported(self, payment_type: PaymentType | str) -> bool:
        try:
            self.map_to_trade_type(payment_type)
        except ConfigurationError:
            return False
        return True

    def supported_payment_types(self) -> list[PaymentType]:
        return list(_PAYMENT_TYPE_MAPPING)

    def supported_trade_types(self) -> list[TradeType]:
        return list(TradeType)

    def is_valid_trade_type(self, trade_type: str) -> bool:
        return trade_type in {t.value for t in TradeType}

    def trade_type_label(self, trade_type: TradeType | str) -> str:
        try:
            return _TRADE_TYPE_LABELS[TradeType(trade_type)]
        except ValueError:
            return f"未知类型({trade_type})"

    def payment_type_info(self, payment_type: PaymentType | str) -> dict:
        trade_type = self.map_to_trade_type(payment_type)
        return {
            "payment_type": PaymentType(payment_type).value,
            "trade_type": trade_type.value,
            "trade_type_label": self.trade_type_label(trade_type),
            "required_parameters": self.required_parameters(trade_type),
            "supported": True,
        }
