"""跨实体引用标识：统一为去除首尾空白的字符串。

买家、卖家、商品等引用在 webhook 元数据、请求体、数据库中一律以字符串比较，
在所有边界调用 normalize_id 完成规范化。
"""
from __future__ import annotations

from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


def normalize_id(value: Any, *, field: str = "id") -> str:
    if value is None:
        raise DomainValidationException(f"{field} is required", field=field)
    text = str(value).strip()
    if not text:
        raise DomainValidationException(f"{field} is required", field=field)
    return text


def normalize_optional_id(value: Any, *, field: str = "id") -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return normalize_id(value, field=field)
