"""微信支付 V2 协议层异常定义。"""


class WechatPayError(Exception):
    """协议层异常基类。"""
    pass


class ConfigurationError(WechatPayError):
    """静态配置缺失或无效：空密钥、空参数、不支持的签名类型、空响应、证书写入失败等。"""
    pass


class ValidationError(WechatPayError):
    """请求字段校验失败，总是指明出错的字段。"""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class ProtocolParseError(WechatPayError):
    """远端返回的 XML/JSON 无法解析，携带底层解析器的诊断信息。"""

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics
