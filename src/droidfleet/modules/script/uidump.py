"""
UI 层级 dump 解析（uiautomator XML + XPath）

所有查询都基于一份新鲜的 dump；选择器查询会先翻译成等价 XPath。
"""
from __future__ import annotations

import re
from typing import List, Optional

from lxml import etree

from ...core.constants import SelectorType
from ...core.errors import ElementNotFoundError
from .types import Bounds, UIElement

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")

# $v 由 XPath 变量绑定，选择器里的引号无需转义
_SELECTOR_XPATH = {
    SelectorType.TEXT: "//*[@text = $v]",
    SelectorType.ID: "//*[substring(@resource-id, string-length(@resource-id) - string-length($v) + 1) = $v]",
    SelectorType.CLASS: "//*[@class = $v]",
    SelectorType.DESC: "//*[@content-desc = $v]",
}


def parse_bounds(value: Optional[str]) -> Optional[Bounds]:
    if not value:
        return None
    m = _BOUNDS_RE.search(value)
    if not m:
        return None
    x1, y1, x2, y2 = (int(g) for g in m.groups())
    return Bounds(x1, y1, x2, y2)


def selector_to_xpath(selector_type) -> str:
    try:
        return _SELECTOR_XPATH[SelectorType(selector_type)]
    except ValueError:
        raise ValueError(
            f"Unknown selector type: {selector_type!r} (expected one of text, id, class, desc)"
        ) from None


def _strip_preamble(raw: str) -> str:
    # `uiautomator dump` 的输出偶尔会在 XML 前后夹带提示文本
    start = raw.find("<?xml")
    if start < 0:
        start = raw.find("<hierarchy")
    if start > 0:
        raw = raw[start:]
    end = raw.rfind(">")
    return raw[: end + 1] if end >= 0 else raw


class UIHierarchy:
    """A parsed UI dump."""

    def __init__(self, xml: str) -> None:
        text = _strip_preamble(xml or "").strip()
        if not text:
            raise ElementNotFoundError("UI dump is empty")
        parser = etree.XMLParser(recover=True, remove_blank_text=True)
        # 带 encoding 声明的字符串不能直接交给 fromstring
        root = etree.fromstring(text.encode("utf-8"), parser=parser)
        if root is None:
            raise ElementNotFoundError("UI dump could not be parsed")
        self.root = root
        self.raw = xml

    @staticmethod
    def to_element(node) -> Optional[UIElement]:
        bounds = parse_bounds(node.get("bounds"))
        if bounds is None:
            return None
        x, y = bounds.center
        return UIElement(
            x=x,
            y=y,
            bounds=bounds,
            text=node.get("text"),
            resource_id=node.get("resource-id"),
            class_name=node.get("class"),
            content_desc=node.get("content-desc"),
        )

    def xpath(self, query: str, **variables) -> List[UIElement]:
        try:
            nodes = self.root.xpath(query, **variables)
        except etree.XPathError as e:
            raise ValueError(f"Invalid XPath {query!r}: {e}") from e
        if not isinstance(nodes, list):
            # 标量结果（count()/boolean()）没有坐标
            raise ValueError(f"XPath {query!r} does not select elements")
        result = []
        for node in nodes:
            if not isinstance(node, etree._Element):
                continue
            element = self.to_element(node)
            if element is not None:
                result.append(element)
        return result

    def find_all(self, selector: str, selector_type="text") -> List[UIElement]:
        return self.xpath(selector_to_xpath(selector_type), v=selector)

    def find(self, selector: str, selector_type="text") -> UIElement:
        matches = self.find_all(selector, selector_type)
        if not matches:
            raise ElementNotFoundError(f"Element not found: {selector} (type: {SelectorType(selector_type).value})")
        return matches[0]

    def find_xpath(self, query: str) -> UIElement:
        matches = self.xpath(query)
        if not matches:
            raise ElementNotFoundError(f"Element not found by XPath: {query}")
        return matches[0]

    def contains_text(self, needle: str) -> bool:
        """Case-insensitive substring search over text / content-desc."""
        lowered = needle.lower()
        for node in self.root.iter("*"):
            for attr in ("text", "content-desc"):
                value = node.get(attr)
                if value and lowered in value.lower():
                    return True
        return False
