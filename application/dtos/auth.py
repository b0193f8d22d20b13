"""
调用方身份（由 API 层从访问令牌解析）
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, field_validator

from domain.common.identifiers import normalize_id


Role = Literal["buyer", "seller", "admin"]


class Principal(BaseModel):
    user_id: str
    role: Role

    @field_validator("user_id", mode="before")
    @classmethod
    def _normalize(cls, v):
        return normalize_id(v, field="sub")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_seller(self) -> bool:
        return self.role == "seller"

    @property
    def is_buyer(self) -> bool:
        return self.role == "buyer"
