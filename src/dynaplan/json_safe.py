from datetime import datetime
from decimal import Decimal


def json_safe(obj):
    """`default=` hook for json.dumps over store items"""
    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).decode("latin-1")
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def to_store_value(value):
    """DynamoDB rejects Python floats; convert them (recursively) to Decimal"""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_store_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_store_value(v) for v in value]
    if isinstance(value, tuple):
        return [to_store_value(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {to_store_value(v) for v in value}
    return value
