"""
XML 编解码模块：微信支付 V2 协议的 CDATA 叶子节点约定。

- encode: 参数字典 → <xml><key><![CDATA[value]]></key>...</xml>
- decode: XML → 字典（属性以 @ 前缀、重复元素折叠为列表）
- 解析器禁用外部实体、DTD 加载和网络访问，防止 XXE
"""

import json
import logging
import re
from typing import Any

from lxml import etree

from wxpay.exceptions import ProtocolParseError

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "xml"

# 文本已解码，声明中的 encoding 不再适用
_XML_DECLARATION = re.compile(r"^\s*<\?xml\b[^>]*\?>")


def _make_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        dtd_validation=False,
        huge_tree=False,
        remove_comments=True,
        remove_pis=True,
    )


def stringify_value(value: Any) -> str:
    """
    统一的取值字符串化规则，编码 XML 与生成签名共用。

    布尔 → Y/N，列表/字典 → 紧凑 JSON（保留中文），其余标量 → str()。
    """
    # bool 是 int 的子类，必须先判断
    if isinstance(value, bool):
        return "Y" if value else "N"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def is_empty(value: Any) -> bool:
    """None 和空字符串视为空值，不参与编码和签名。"""
    return value is None or value == ""


def _cdata(text: str) -> str:
    # 值中出现 ]]> 时拆成两段 CDATA，保证文档合法
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def encode(data: dict, root: str = ROOT_ELEMENT) -> str:
    """将参数字典编码为 XML 字符串，空值跳过。"""
    parts = [f"<{root}>"]
    for key, value in data.items():
        if is_empty(value):
            continue
        parts.append(f"<{key}>{_cdata(stringify_value(value))}</{key}>")
    parts.append(f"</{root}>")
    return "".join(parts)


def _local_name(tag: str) -> str:
    return etree.QName(tag).localname if tag.startswith("{") else tag


def _element_children(element) -> list:
    # 实体引用、注释等节点的 tag 不是字符串
    return [child for child in element if isinstance(child.tag, str)]


def _decode_element(element) -> Any:
    result: dict[str, Any] = {
        f"@{_local_name(name)}": value for name, value in element.attrib.items()
    }

    children = _element_children(element)
    if not children:
        # 未展开的实体引用只贡献其后的 tail 文本
        text = ((element.text or "") + "".join(
            child.tail or "" for child in element
        )).strip()
        if not result:
            return text
        result["text"] = text
        return result

    for child in children:
        name = _local_name(child.tag)
        value = _decode_element(child)
        if name not in result:
            result[name] = value
        elif isinstance(result[name], list):
            result[name].append(value)
        else:
            result[name] = [result[name], value]
    return result


def _parse(xml: str):
    try:
        data = _XML_DECLARATION.sub("", xml, count=1).encode("utf-8")
        return etree.fromstring(data, parser=_make_parser())
    except etree.XMLSyntaxError as e:
        diagnostics = ", ".join(
            entry.message.strip() for entry in e.error_log
        ) or str(e)
        raise ProtocolParseError(f"XML parse failed: {diagnostics}", diagnostics) from e


def decode(xml: str) -> dict:
    """
    将 XML 字符串解码为字典。

    Args:
        xml: XML 文本。

    Returns:
        根元素的子元素字典；空输入或根元素为纯文本时返回空字典。

    Raises:
        ProtocolParseError: XML 格式错误。
    """
    if not xml or not xml.strip():
        return {}

    root = _parse(xml)
    result = _decode_element(root)
    if not isinstance(result, dict):
        return {}
    return result


def is_valid(xml: str) -> bool:
    """结构性校验，不抛异常。"""
    if not xml or not xml.strip():
        return False
    try:
        _parse(xml)
    except ProtocolParseError:
        return False
    return True


def extract_field(xml: str, name: str) -> str | None:
    """提取顶层标量字段，解析失败或字段非标量时返回 None。"""
    if not xml or not xml.strip() or not name:
        return None
    try:
        data = decode(xml)
    except ProtocolParseError:
        return None
    value = data.get(name)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def get_field(xml: str, name: str, default: Any = None) -> Any:
    try:
        data = decode(xml)
    except ProtocolParseError:
        return default
    return data.get(name, default)


def check_required_fields(xml: str, fields: list[str]) -> list[str]:
    """返回缺失（或为空）的字段列表；XML 无法解析时视为全部缺失。"""
    if not fields:
        return []
    try:
        data = decode(xml)
    except ProtocolParseError:
        return list(fields)
    return [f for f in fields if is_empty(data.get(f))]


def format_xml(xml: str) -> str:
    """美化输出 XML，用于日志和调试。"""
    if not xml or not xml.strip():
        return ""
    root = _parse(xml)
    return etree.tostring(root, pretty_print=True, encoding="unicode")
