"""
微信支付 V2 签名生成与验证模块，支持 MD5 和 HMAC-SHA256。

1. 过滤空值和 sign 参数
2. 按参数名 ASCII 码从小到大排序
3. 拼接 URL 键值对（参数值不 URL 编码）
4. 末尾拼接 &key=商户密钥 后做摘要，结果转大写
"""

import hashlib
import hmac
import secrets
import string

from wxpay.exceptions import ConfigurationError
from wxpay.models.schemas import SignAlgorithm
from wxpay.services.xml_codec import is_empty, stringify_value

NONCE_ALPHABET = string.ascii_letters + string.digits


def generate_nonce_str(length: int = 32) -> str:
    """生成随机字符串（用于 nonce_str）。"""
    if length <= 0:
        raise ConfigurationError("nonce length must be greater than 0")
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def coerce_algorithm(algorithm: SignAlgorithm | str) -> SignAlgorithm:
    try:
        return SignAlgorithm(algorithm)
    except ValueError:
        raise ConfigurationError(f"unsupported sign type: {algorithm}")


class SignatureService:
    """V2 签名服务，无状态，可在多线程中共享。"""

    def _filter(self, parameters: dict) -> dict[str, str]:
        return {
            k: stringify_value(v)
            for k, v in parameters.items()
            if k != "sign" and not is_empty(v)
        }

    def _build_query_string(self, filtered: dict[str, str]) -> str:
        return "&".join(f"{k}={filtered[k]}" for k in sorted(filtered))

    def _digest(self, sign_str: str, key: str, algorithm: SignAlgorithm) -> str:
        data = sign_str.encode("utf-8")
        if algorithm is SignAlgorithm.MD5:
            return hashlib.md5(data).hexdigest().upper()
        if algorithm is SignAlgorithm.HMAC_SHA256:
            return hmac.new(key.encode("utf-8"), data, hashlib.sha256).hexdigest().upper()
        raise ConfigurationError(f"unsupported sign type: {algorithm}")

    def generate(
        self,
        parameters: dict,
        key: str,
        algorithm: SignAlgorithm | str = SignAlgorithm.MD5,
    ) -> str:
        """
        生成签名。

        Args:
            parameters: 参数字典，sign 字段会被忽略。
            key: 商户 API 密钥。
            algorithm: 签名类型。

        Returns:
            大写十六进制签名字符串。

        Raises:
            ConfigurationError: 密钥为空、过滤后参数为空或签名类型不支持。
        """
        if not key:
            raise ConfigurationError("merchant key must not be empty")

        algorithm = coerce_algorithm(algorithm)

        filtered = self._filter(parameters)
        if not filtered:
            raise ConfigurationError("parameters to sign must not be empty")

        sign_str = self._build_query_string(filtered) + "&key=" + key
        return self._digest(sign_str, key, algorithm)

    def verify(
        self,
        parameters: dict,
        key: str,
        algorithm: SignAlgorithm | str = SignAlgorithm.MD5,
    ) -> bool:
        """验证参数中的 sign 字段，大小写不敏感，常量时间比较。"""
        if "sign" not in parameters:
            return False

        received = parameters["sign"]
        received = received.upper() if isinstance(received, str) else ""
        expected = self.generate(parameters, key, algorithm)
        return hmac.compare_digest(expected, received)

    def sign_parameters(
        self,
        parameters: dict,
        key: str,
        algorithm: SignAlgorithm | str = SignAlgorithm.MD5,
    ) -> dict:
        """
        为参数添加签名，返回新字典。

        缺少 nonce_str 时自动生成；非 MD5 签名时写入 sign_type。
        """
        algorithm = coerce_algorithm(algorithm)
        signed = dict(parameters)

        nonce = signed.get("nonce_str")
        if not isinstance(nonce, str) or nonce == "":
            signed["nonce_str"] = generate_nonce_str()

        if algorithm is not SignAlgorithm.MD5:
            signed["sign_type"] = algorithm.value

        signed["sign"] = self.generate(signed, key, algorithm)
        return signed

    def generate_nonce(self, length: int = 32) -> str:
        return generate_nonce_str(length)

    def is_sign_type_supported(self, sign_type: str) -> bool:
        return sign_type in self.supported_sign_types()

    def supported_sign_types(self) -> list[str]:
        return [a.value for a in SignAlgorithm]

    def debug_signature(
        self,
        parameters: dict,
        key: str,
        algorithm: SignAlgorithm | str = SignAlgorithm.MD5,
    ) -> dict:
        """
        返回签名计算的中间步骤，用于排查签名错误。

        与 generate 不同，这里不校验密钥和参数是否为空。
        """
        filtered = self._filter(parameters)
        sorted_params = {k: filtered[k] for k in sorted(filtered)}
        query_string = self._build_query_string(filtered)
        sign_str = query_string + "&key=" + key

        sign_type = algorithm.value if isinstance(algorithm, SignAlgorithm) else algorithm
        signature = ""
        if self.is_sign_type_supported(sign_type):
            signature = self._digest(sign_str, key, SignAlgorithm(sign_type))

        return {
            "original_parameters": dict(parameters),
            "filtered_parameters": sorted_params,
            "query_string": query_string,
            "string_sign_temp": sign_str,
            "signature": signature,
            "sign_type": sign_type,
        }
