"""文件大小的人类可读格式与其逆运算。

卡片中的大小文本是解码依据之一，单位表与格式必须与编码端完全一致：
- 单位：Bytes / KB / MB / GB，进制 1024；
- 数值保留两位小数后去掉多余的 0（``2.50`` -> ``2.5``，``3.00`` -> ``3``）；
- 0 字节渲染为 ``0 Bytes``。
"""

from __future__ import annotations

import re

SIZE_UNITS = ("Bytes", "KB", "MB", "GB")
SIZE_FACTOR = 1024

_SIZE_PATTERN = re.compile(r"^([\d.]+)\s*(Bytes|KB|MB|GB)$")


def format_file_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    index = 0
    value = float(size_bytes)
    while value >= SIZE_FACTOR and index < len(SIZE_UNITS) - 1:
        value /= SIZE_FACTOR
        index += 1
    text = f"{round(value, 2):.2f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[index]}"


def parse_file_size(text: str | None) -> int:
    """将 ``format_file_size`` 的输出还原为字节数；无法识别时返回 0。"""
    match = _SIZE_PATTERN.match((text or "").strip())
    if not match:
        return 0
    try:
        value = float(match.group(1))
    except ValueError:
        return 0
    exponent = SIZE_UNITS.index(match.group(2))
    return int(round(value * SIZE_FACTOR ** exponent))
