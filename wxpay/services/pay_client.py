"""
微信支付 V2 API 客户端：发送签名后的 XML 请求并解析响应。

主要功能：
- unified_order: 调用 /pay/unifiedorder 统一下单
- refund: 调用 /secapi/pay/refund 申请退款（双向证书）
- 传输异常按 retry_times 重试；响应签名校验失败视为异常
- 业务失败（is_success=False）原样返回，由调用方处理
"""

import logging
import ssl

import httpx

from wxpay.config import WechatPayConfig
from wxpay.exceptions import ConfigurationError
from wxpay.models.requests import RefundRequest, UnifiedOrderRequest
from wxpay.models.responses import RefundResponse, UnifiedOrderResponse
from wxpay.models.schemas import Merchant
from wxpay.services.certificate_manager import CertificateManager

logger = logging.getLogger(__name__)


class WechatPayClientError(Exception):
    """微信支付客户端异常。"""
    pass


class WechatPayClient:
    """微信支付 V2 API 客户端。"""

    def __init__(
        self,
        config: WechatPayConfig,
        certificate_manager: CertificateManager | None = None,
    ):
        config.validate()
        self.config = config
        self.certificate_manager = certificate_manager or CertificateManager.from_config(config)

    def _ssl_context(self, merchant: Merchant | None) -> ssl.SSLContext:
        """加载商户证书，构造双向认证用的 SSL 上下文。"""
        cert_path = self.certificate_manager.resolve_cert_path(merchant)
        key_path = self.certificate_manager.resolve_key_path(merchant)
        if not cert_path or not key_path:
            raise ConfigurationError("refund requires merchant certificate and key")

        context = ssl.create_default_context(cafile=self.config.ca_cert_path)
        try:
            context.load_cert_chain(cert_path, key_path)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(f"failed to load merchant certificate: {e}") from e
        return context

    def _post(self, path: str, body: str, verify: ssl.SSLContext | bool = True) -> str:
        """POST XML 报文，传输异常最多重试 retry_times 次。"""
        url = self.config.base_url + path
        attempts = self.config.retry_times + 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with httpx.Client(
                    timeout=self.config.http_timeout(),
                    headers=self.config.default_headers,
                    verify=verify,
                ) as client:
                    response = client.post(url, content=body.encode("utf-8"))
                    response.raise_for_status()
                    return response.text
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "微信支付请求传输异常 (path=%s, attempt=%d/%d): %s",
                    path, attempt, attempts, e,
                )
            except httpx.HTTPError as e:
                raise WechatPayClientError(f"request to {path} failed: {e}") from e

        raise WechatPayClientError(f"request to {path} failed: {last_error}") from last_error

    def unified_order(self, request: UnifiedOrderRequest) -> UnifiedOrderResponse:
        """
        统一下单。

        Raises:
            ValidationError: 请求字段校验失败。
            ProtocolParseError: 响应 XML 无法解析。
            WechatPayClientError: 请求失败或响应签名校验失败。
        """
        signed = request.signed(self.config.key, self.config.sign_type)
        logger.info(
            "发起统一下单: out_trade_no=%s, total_fee=%s, trade_type=%s",
            signed.out_trade_no, signed.total_fee, signed.to_wire_map().get("trade_type"),
        )
        raw = self._post(UnifiedOrderRequest.REQUEST_PATH, signed.to_xml())
        logger.debug("统一下单响应: %s", raw)

        response = UnifiedOrderResponse.from_xml(raw)
        if not response.verify_signature(self.config.key, self.config.sign_type):
            logger.error("统一下单响应签名验证失败: out_trade_no=%s", signed.out_trade_no)
            raise WechatPayClientError("unified order response signature verification failed")

        if not response.is_success:
            logger.warning(
                "统一下单失败: out_trade_no=%s, code=%s, msg=%s",
                signed.out_trade_no, response.error_code, response.error_message,
            )
        return response

    def refund(self, request: RefundRequest, merchant: Merchant | None = None) -> RefundResponse:
        """
        申请退款，使用商户证书（或配置中的默认证书）进行双向认证。

        Raises:
            ValidationError: 请求字段校验失败。
            ConfigurationError: 未配置证书或证书无法加载。
            WechatPayClientError: 请求失败或响应签名校验失败。
        """
        key = merchant.api_key if merchant and merchant.api_key else self.config.key
        signed = request.signed(key, self.config.sign_type)
        context = self._ssl_context(merchant)

        logger.info(
            "发起退款: out_refund_no=%s, refund_fee=%s/%s",
            signed.out_refund_no, signed.refund_fee, signed.total_fee,
        )
        raw = self._post(RefundRequest.REQUEST_PATH, signed.to_xml(), verify=context)

        response = RefundResponse.from_xml(raw)
        if not response.verify_signature(key, self.config.sign_type):
            logger.error("退款响应签名验证失败: out_refund_no=%s", signed.out_refund_no)
            raise WechatPayClientError("refund response signature verification failed")

        if not response.is_success:
            logger.warning(
                "退款失败: out_refund_no=%s, code=%s, msg=%s",
                signed.out_refund_no, response.error_code, response.error_message,
            )
        return response
