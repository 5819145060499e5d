"""Field derivation for raw marketplace orders."""

from __future__ import annotations

from typing import Any, Mapping

UNKNOWN_STATUS = "Unknown"
UNKNOWN_PRODUCT = "Unknown Product"


def postal_address(order: Mapping[str, Any]) -> Mapping[str, Any]:
    return (order.get("shippingInfo") or {}).get("postalAddress") or {}


def customer_name(order: Mapping[str, Any]) -> str:
    return str(postal_address(order).get("name") or "")


def customer_address(order: Mapping[str, Any]) -> str:
    """Multi-line address; absent parts are left out."""
    address = postal_address(order)
    city = address.get("city") or ""
    region = " ".join(str(part) for part in (address.get("state"), address.get("postalCode")) if part)
    locality = ", ".join(part for part in (str(city), region) if part)
    parts = [address.get("address1"), address.get("address2"), locality, address.get("country")]
    return "\n".join(str(part) for part in parts if part)


def line_status(line: Mapping[str, Any]) -> str:
    history = (line.get("orderLineStatuses") or {}).get("orderLineStatus") or []
    if not history:
        return UNKNOWN_STATUS
    return str(history[-1].get("status") or UNKNOWN_STATUS)


def order_status(order: Mapping[str, Any]) -> str:
    lines = (order.get("orderLines") or {}).get("orderLine") or []
    if not lines:
        return UNKNOWN_STATUS
    return line_status(lines[0])


def line_sku(line: Mapping[str, Any]) -> str:
    return str((line.get("item") or {}).get("sku") or "")


def line_quantity(line: Mapping[str, Any]) -> int:
    raw = (line.get("orderLineQuantity") or {}).get("amount")
    try:
        return int(raw) if raw not in (None, "") else 1
    except (TypeError, ValueError):
        return int(float(raw))


def _charge(line: Mapping[str, Any], charge_type: str) -> Mapping[str, Any]:
    for charge in (line.get("charges") or {}).get("charge") or []:
        if charge.get("chargeType") == charge_type:
            return charge
    return {}


def _amount(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    return float(value)


def sell_price(line: Mapping[str, Any]) -> float:
    return _amount((_charge(line, "PRODUCT").get("chargeAmount") or {}).get("amount"))


def tax(line: Mapping[str, Any]) -> float:
    tax_info = _charge(line, "PRODUCT").get("tax") or {}
    return _amount((tax_info.get("taxAmount") or {}).get("amount"))


def shipping(line: Mapping[str, Any]) -> float:
    return _amount((_charge(line, "SHIPPING").get("chargeAmount") or {}).get("amount"))
