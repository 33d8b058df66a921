from typing import Dict, Iterable, Optional


ADDRESS_LOG_KEYS = ("name", "city", "country", "postal_code", "save_address")


def mask_value(value):
    if not isinstance(value, str):
        return value
    if '@' in value:  # email
        name, _, domain = value.partition('@')
        return (name[:2] + '***@' + domain) if name else '***@' + domain
    if len(value) > 12:
        return value[:4] + '...' + value[-4:]
    if len(value) > 4:
        return value[:2] + '***'
    return '***'


def sanitize_payload(payload: Optional[Dict], allowed_keys: Iterable[str] = ADDRESS_LOG_KEYS) -> Dict:
    """Return a filtered copy of payload with only allowed keys and masked values."""
    result = {}
    for key in allowed_keys:
        if payload and key in payload:
            result[key] = mask_value(payload[key])
    return result
