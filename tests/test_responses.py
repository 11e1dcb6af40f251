"""统一下单 / 申请退款响应单元测试。"""

import json

import pytest

from wxpay.exceptions import ConfigurationError, ProtocolParseError
from wxpay.models.responses import RefundResponse, UnifiedOrderResponse
from wxpay.models.schemas import SignAlgorithm
from wxpay.services import xml_codec
from wxpay.services.sign import SignatureService

KEY = "192006250b4c09247ec02edce69f6a2d"


def _signed_xml(fields: dict, algorithm=SignAlgorithm.MD5) -> str:
    return xml_codec.encode(SignatureService().sign_parameters(fields, KEY, algorithm))


SUCCESS_FIELDS = {
    "return_code": "SUCCESS",
    "return_msg": "OK",
    "appid": "wx123",
    "mch_id": "1900000109",
    "nonce_str": "5K8264ILTKCH16CQ",
    "result_code": "SUCCESS",
    "prepay_id": "wx201410272009395522657a690389285100",
    "trade_type": "JSAPI",
}


class TestUnifiedOrderParse:
    """UnifiedOrderResponse.from_xml 测试。"""

    def test_success(self):
        response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))
        assert response.is_success is True
        assert response.prepay_id == "wx201410272009395522657a690389285100"
        assert response.error_code == ""
        assert response.app_id == "wx123"
        assert response.trade_type == "JSAPI"

    def test_communication_failure(self):
        xml = "<xml><return_code>FAIL</return_code><return_msg>签名失败</return_msg></xml>"
        response = UnifiedOrderResponse.from_xml(xml)
        assert response.is_success is False
        assert response.error_code == "FAIL"
        assert response.error_message == "签名失败"
        assert response.prepay_id == ""

    def test_communication_failure_default_message(self):
        response = UnifiedOrderResponse.from_xml("<xml><return_code>FAIL</return_code></xml>")
        assert response.error_message == "通信失败"

    def test_business_failure_mapped_with_description(self):
        xml = (
            "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code>"
            "<err_code>ORDERPAID</err_code><err_code_des>该订单已支付</err_code_des></xml>"
        )
        response = UnifiedOrderResponse.from_xml(xml)
        assert response.is_success is False
        assert response.error_code == "ORDERPAID"
        assert response.error_message == "商户订单已支付(该订单已支付)"

    def test_business_failure_same_text_not_repeated(self):
        xml = (
            "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code>"
            "<err_code>SYSTEMERROR</err_code><err_code_des>系统错误</err_code_des></xml>"
        )
        assert UnifiedOrderResponse.from_xml(xml).error_message == "系统错误"

    def test_business_failure_without_err_code(self):
        xml = "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code></xml>"
        response = UnifiedOrderResponse.from_xml(xml)
        assert response.error_code == "UNKNOWN_ERROR"
        assert response.error_message == "未知错误"

    def test_unknown_err_code(self):
        xml = (
            "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code>"
            "<err_code>NEW_CODE</err_code><err_code_des>新错误</err_code_des></xml>"
        )
        assert UnifiedOrderResponse.from_xml(xml).error_message == "未知错误(新错误)"

    def test_empty_response_raises(self):
        with pytest.raises(ConfigurationError, match="empty response"):
            UnifiedOrderResponse.from_xml("")

    def test_malformed_response_raises(self):
        with pytest.raises(ProtocolParseError, match="unified order response"):
            UnifiedOrderResponse.from_xml("<xml><return_code>SUCCESS</xml>")

    def test_raw_fields_read_only(self):
        response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))
        with pytest.raises(TypeError):
            response.raw_fields["prepay_id"] = "x"


class TestUnifiedOrderSignature:
    """响应签名验证测试。"""

    def test_valid_signature(self):
        response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))
        assert response.verify_signature(KEY) is True

    def test_hmac_signature(self):
        xml = _signed_xml(SUCCESS_FIELDS, SignAlgorithm.HMAC_SHA256)
        response = UnifiedOrderResponse.from_xml(xml)
        assert response.verify_signature(KEY, SignAlgorithm.HMAC_SHA256) is True

    def test_tampered_response(self):
        xml = _signed_xml(SUCCESS_FIELDS).replace("wx201410272009395522657a690389285100", "wxevil")
        assert UnifiedOrderResponse.from_xml(xml).verify_signature(KEY) is False

    def test_missing_sign_on_success(self):
        response = UnifiedOrderResponse.from_xml(xml_codec.encode(SUCCESS_FIELDS))
        assert response.verify_signature(KEY) is False

    def test_failure_skips_verification(self):
        response = UnifiedOrderResponse.from_xml("<xml><return_code>FAIL</return_code></xml>")
        assert response.verify_signature(KEY) is True

    def test_required_field_helpers(self):
        response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))
        assert response.has_field("prepay_id") is True
        assert response.has_field("code_url") is False
        assert response.validate_required_fields(["prepay_id", "code_url"]) == ["code_url"]


class TestPayParams:
    """前端支付参数生成测试。"""

    def setup_method(self):
        self.response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))

    @pytest.mark.parametrize("method", [
        "generate_mini_program_pay_params", "generate_jsapi_pay_params",
    ])
    def test_jsapi_style_params(self, method):
        params = getattr(self.response, method)(KEY)
        assert set(params) == {"appId", "timeStamp", "nonceStr", "package", "signType", "paySign"}
        assert params["appId"] == "wx123"
        assert params["package"] == "prepay_id=wx201410272009395522657a690389285100"
        assert params["signType"] == "MD5"
        assert params["timeStamp"].isdigit()

        unsigned = {k: v for k, v in params.items() if k != "paySign"}
        assert params["paySign"] == SignatureService().generate(unsigned, KEY)

    def test_jsapi_params_hmac(self):
        params = self.response.generate_jsapi_pay_params(KEY, "HMAC-SHA256")
        assert params["signType"] == "HMAC-SHA256"
        assert len(params["paySign"]) == 64

    def test_app_params(self):
        params = self.response.generate_app_pay_params(KEY)
        assert params["partnerid"] == "1900000109"
        assert params["prepayid"] == "wx201410272009395522657a690389285100"
        assert params["package"] == "Sign=WXPay"
        unsigned = {k: v for k, v in params.items() if k != "sign"}
        assert params["sign"] == SignatureService().generate(unsigned, KEY)

    def test_failed_response_cannot_build_params(self):
        failed = UnifiedOrderResponse.from_xml("<xml><return_code>FAIL</return_code></xml>")
        with pytest.raises(ConfigurationError, match="prepay_id"):
            failed.generate_mini_program_pay_params(KEY)
        with pytest.raises(ConfigurationError):
            failed.generate_app_pay_params(KEY)

    def test_success_without_prepay_id(self):
        fields = {k: v for k, v in SUCCESS_FIELDS.items() if k != "prepay_id"}
        response = UnifiedOrderResponse.from_xml(_signed_xml(fields))
        with pytest.raises(ConfigurationError):
            response.generate_jsapi_pay_params(KEY)


class TestUnifiedOrderInfo:
    """payment_info / debug_info / to_json 测试。"""

    def test_native_payment_info(self):
        fields = dict(SUCCESS_FIELDS, trade_type="NATIVE", code_url="weixin://wxpay/bizpayurl?pr=abc")
        response = UnifiedOrderResponse.from_xml(_signed_xml(fields))
        assert response.payment_info()["code_url"] == "weixin://wxpay/bizpayurl?pr=abc"

    def test_h5_payment_info(self):
        fields = dict(SUCCESS_FIELDS, trade_type="MWEB", mweb_url="https://wx.tenpay.com/x")
        response = UnifiedOrderResponse.from_xml(_signed_xml(fields))
        assert response.payment_info()["mweb_url"] == "https://wx.tenpay.com/x"

    def test_to_json(self):
        response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))
        data = json.loads(response.to_json())
        assert data["success"] is True
        assert data["data"]["prepay_id"] == response.prepay_id

    def test_debug_info(self):
        response = UnifiedOrderResponse.from_xml(_signed_xml(SUCCESS_FIELDS))
        assert response.debug_info()["raw_data"]["appid"] == "wx123"


REFUND_SUCCESS_FIELDS = {
    "return_code": "SUCCESS",
    "result_code": "SUCCESS",
    "appid": "wx123",
    "mch_id": "1900000109",
    "nonce_str": "NfsMFbUFpdbEhPXP",
    "transaction_id": "1008450740201411110005820873",
    "out_trade_no": "1415757673",
    "out_refund_no": "1415701182",
    "refund_id": "2008450740201411110000174436",
    "refund_fee": "1",
    "total_fee": "1",
    "cash_fee": "1",
}


class TestRefundResponse:
    """RefundResponse 测试。"""

    def test_success(self):
        response = RefundResponse.from_xml(_signed_xml(REFUND_SUCCESS_FIELDS))
        assert response.is_success is True
        assert response.refund_id == "2008450740201411110000174436"
        assert response.refund_fee == 1
        assert response.total_fee == 1
        assert response.coupon_refund_fee == 0
        assert response.verify_signature(KEY) is True
        assert response.refund_info()["out_refund_no"] == "1415701182"

    def test_garbled_integer_becomes_zero(self):
        response = RefundResponse.from_xml(
            _signed_xml(dict(REFUND_SUCCESS_FIELDS, refund_fee="abc"))
        )
        assert response.is_success is True
        assert response.refund_fee == 0

    def test_mapped_error(self):
        xml = (
            "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code>"
            "<err_code>NOTENOUGH</err_code><err_code_des>基本账户余额不足</err_code_des></xml>"
        )
        response = RefundResponse.from_xml(xml)
        assert response.error_code == "NOTENOUGH"
        assert response.error_message == "余额不足"

    def test_unmapped_error_uses_description(self):
        xml = (
            "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code>"
            "<err_code>NEW_CODE</err_code><err_code_des>新错误</err_code_des></xml>"
        )
        assert RefundResponse.from_xml(xml).error_message == "新错误"

    def test_missing_err_code_keeps_result_code(self):
        xml = "<xml><return_code>SUCCESS</return_code><result_code>FAIL</result_code></xml>"
        response = RefundResponse.from_xml(xml)
        assert response.error_code == "FAIL"
        assert response.error_message == "业务失败"

    def test_communication_failure(self):
        response = RefundResponse.from_xml(
            "<xml><return_code>FAIL</return_code><return_msg>证书错误</return_msg></xml>"
        )
        assert response.is_success is False
        assert response.error_code == "FAIL"
        assert response.error_message == "证书错误"
