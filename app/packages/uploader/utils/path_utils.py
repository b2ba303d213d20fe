"""Path utilities: destination segments, share links and attachment names.

- A destination path is an ordered tuple of folder names; root is the empty tuple;
- The rendered form joins segments with '/', without leading or trailing slash;
- Parsing strips each segment, so a folder name containing '/' or with
  surrounding whitespace cannot round-trip and is never offered as a segment.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import parse_qs, unquote, urlparse

_FOLDER_LINK_PATTERN = re.compile(r"/folders/([a-zA-Z0-9_-]+)")
_RAW_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{10,}$")


def split_path(text: Optional[str]) -> tuple[str, ...]:
    return tuple(part.strip() for part in (text or "").split("/") if part.strip())


def join_path(segments: Iterable[str]) -> str:
    return "/".join(segments)


def is_path_segment(name: str) -> bool:
    return bool(name) and "/" not in name and name == name.strip()


def extract_folder_id(link: str) -> Optional[str]:
    """从文件夹分享链接中提取 ID；支持 ``/folders/<id>``、``?id=<id>`` 与裸 ID。"""
    raw = (link or "").strip()
    if not raw:
        return None
    match = _FOLDER_LINK_PATTERN.search(raw)
    if match:
        return match.group(1)
    query_ids = parse_qs(urlparse(raw).query).get("id")
    if query_ids:
        return query_ids[0]
    if _RAW_ID_PATTERN.match(raw):
        return raw
    return None


def file_name_from_url(url: str) -> str:
    try:
        name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    except ValueError:
        return "attachment"
    return name or "attachment"
