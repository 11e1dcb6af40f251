"""全局测试配置：公共常量与夹具。"""

import pytest

from wxpay.config import WechatPayConfig
from wxpay.services.certificate_manager import CertificateCache

TEST_KEY = "192006250b4c09247ec02edce69f6a2d"
TEST_APP_ID = "wxd930ea5d5a258f4f"
TEST_MCH_ID = "10000100"


@pytest.fixture
def cert_cache(tmp_path):
    """使用临时目录的证书缓存，避免污染系统临时目录。"""
    return CertificateCache(tmp_path / "certs")


@pytest.fixture
def config():
    return WechatPayConfig(
        app_id=TEST_APP_ID,
        mch_id=TEST_MCH_ID,
        key=TEST_KEY,
        retry_times=1,
    )
