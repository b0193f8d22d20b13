"""
结账元数据编解码

定价结果在创建支付时写入支付渠道元数据，作为订单落库时的唯一依据（快照），
因此之后的税率/平台费变更不会影响已支付的订单。

渠道限制：值为字符串、单值 <= 500 字符、最多 50 个键；
超长的 JSON 值拆分为 ``<key>_0 .. <key>_n`` 并以 ``<key>_chunks`` 记录分片数。
"""
from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from application.dtos.checkout import ConfirmedLine, PaymentConfirmation
from domain.common.exceptions import DomainValidationException
from domain.common.identifiers import normalize_id, normalize_optional_id
from domain.pricing.entity import PricingBreakdown

SCHEMA_VERSION = "1"
MAX_VALUE_LENGTH = 500
MAX_KEYS = 50


class CheckoutMetadataError(DomainValidationException):
    """元数据缺失或无法解析"""

    def __init__(self, message: str, *, key: Optional[str] = None):
        super().__init__(message, field=key, details={"metadata_key": key} if key else None)


def _put_chunked(metadata: dict[str, str], key: str, value: str) -> None:
    if len(value) <= MAX_VALUE_LENGTH:
        metadata[key] = value
        return
    chunks = [value[i:i + MAX_VALUE_LENGTH] for i in range(0, len(value), MAX_VALUE_LENGTH)]
    for index, chunk in enumerate(chunks):
        metadata[f"{key}_{index}"] = chunk
    metadata[f"{key}_chunks"] = str(len(chunks))


def _get_chunked(metadata: Mapping[str, Any], key: str) -> Optional[str]:
    if key in metadata and metadata[key] not in (None, ""):
        return str(metadata[key])
    count_raw = metadata.get(f"{key}_chunks")
    if count_raw in (None, ""):
        return None
    try:
        count = int(count_raw)
    except (TypeError, ValueError):
        raise CheckoutMetadataError(f"Invalid chunk count for {key}", key=key)
    parts = []
    for index in range(count):
        part = metadata.get(f"{key}_{index}")
        if part is None:
            raise CheckoutMetadataError(f"Missing chunk {index} of {key}", key=key)
        parts.append(str(part))
    return "".join(parts)


def encode_checkout_metadata(
    breakdown: PricingBreakdown,
    *,
    buyer_id: str,
    shipping_address: dict[str, Any],
    currency: str,
) -> dict[str, str]:
    """将价格明细、买家与收货地址编码为渠道元数据（全部为字符串）"""
    sellers = breakdown.seller_ids
    items = [
        {
            "p": line.product_id,
            "q": line.quantity,
            "u": str(line.final_unit_price),
            "s": line.seller_id,
        }
        for line in breakdown.lines
    ]
    metadata: dict[str, str] = {
        "v": SCHEMA_VERSION,
        "buyer": buyer_id,
        "seller": sellers[0] if sellers else "",
        "currency": currency,
        "subtotal": str(breakdown.subtotal),
        "discount": str(breakdown.discount_applied),
        "promo_discount": str(breakdown.promo_discount),
        "platform_discount": str(breakdown.platform_discount),
        "shipping_method": breakdown.shipping_method.value,
        "shipping_cost": str(breakdown.shipping_cost),
        "tax_amount": str(breakdown.tax_amount),
        "platform_fee": str(breakdown.platform_fee),
        "total": str(breakdown.total),
    }
    if breakdown.promo_code_id:
        metadata["promo_code_id"] = breakdown.promo_code_id
    _put_chunked(metadata, "items", json.dumps(items, separators=(",", ":")))
    _put_chunked(metadata, "shipping_address", json.dumps(shipping_address, separators=(",", ":"), default=str))
    if len(metadata) > MAX_KEYS:
        raise CheckoutMetadataError("Checkout is too large to be encoded into payment metadata", key="items")
    return metadata


def _decimal(metadata: Mapping[str, Any], key: str) -> Decimal:
    raw = metadata.get(key)
    if raw in (None, ""):
        raise CheckoutMetadataError(f"Missing metadata field {key}", key=key)
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise CheckoutMetadataError(f"Invalid amount in metadata field {key}", key=key)


def _json(metadata: Mapping[str, Any], key: str) -> Any:
    raw = _get_chunked(metadata, key)
    if raw is None:
        raise CheckoutMetadataError(f"Missing metadata field {key}", key=key)
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise CheckoutMetadataError(f"Invalid JSON in metadata field {key}", key=key)


def has_checkout_metadata(metadata: Optional[Mapping[str, Any]]) -> bool:
    """是否为本服务创建的支付（含买家与商品信息）"""
    if not metadata:
        return False
    return bool(metadata.get("buyer")) and ("items" in metadata or "items_chunks" in metadata)


def decode_checkout_metadata(
    metadata: Mapping[str, Any],
    *,
    source: str,
    payment_intent_id: Optional[str] = None,
    checkout_session_id: Optional[str] = None,
) -> PaymentConfirmation:
    """渠道元数据 → 统一的支付确认记录"""
    buyer_raw = metadata.get("buyer")
    if not buyer_raw:
        raise CheckoutMetadataError("Missing metadata field buyer", key="buyer")
    buyer_id = normalize_id(buyer_raw, field="buyer")
    default_seller = normalize_optional_id(metadata.get("seller"))

    raw_items = _json(metadata, "items")
    if not isinstance(raw_items, list) or not raw_items:
        raise CheckoutMetadataError("Metadata contains no line items", key="items")
    lines: list[ConfirmedLine] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise CheckoutMetadataError("Invalid line item in metadata", key="items")
        seller = normalize_optional_id(raw.get("s")) or default_seller
        try:
            lines.append(
                ConfirmedLine(
                    product_id=normalize_id(raw.get("p"), field="product_id"),
                    seller_id=normalize_id(seller, field="seller_id"),
                    quantity=int(raw.get("q", 0)),
                    price=Decimal(str(raw.get("u"))),
                )
            )
        except (ValidationError, InvalidOperation, TypeError, ValueError):
            raise CheckoutMetadataError("Invalid line item in metadata", key="items")

    address = _json(metadata, "shipping_address")
    if not isinstance(address, dict):
        raise CheckoutMetadataError("Invalid shipping address in metadata", key="shipping_address")

    try:
        return PaymentConfirmation(
            source=source,
            payment_intent_id=payment_intent_id,
            checkout_session_id=checkout_session_id,
            buyer_id=buyer_id,
            lines=lines,
            shipping_address=address,
            subtotal=_decimal(metadata, "subtotal"),
            discount_amount=_decimal(metadata, "discount"),
            shipping_cost=_decimal(metadata, "shipping_cost"),
            tax_amount=_decimal(metadata, "tax_amount"),
            platform_fee=_decimal(metadata, "platform_fee"),
            total_amount=_decimal(metadata, "total"),
            currency=str(metadata.get("currency") or "usd"),
            promo_code_id=normalize_optional_id(metadata.get("promo_code_id")),
        )
    except ValidationError as exc:
        raise CheckoutMetadataError(f"Invalid checkout metadata: {exc.errors()[0].get('msg')}")
