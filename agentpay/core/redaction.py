"""
Sensitive data redaction for logs and error messages.

Transaction hashes and wallet addresses are public on-chain data and are left
intact. Only signing keys, raw payment payloads and credentials are masked.
"""

import re
from dataclasses import dataclass, field
from typing import Any


# A 32-byte hex value that is not part of a longer hex run. Tx hashes are the
# same shape, so this pattern is only applied to values under sensitive keys
# and to error text that mentions a key.
PRIVATE_KEY_PATTERN = re.compile(r"(?<![0-9a-fA-Fx])(0x)?[0-9a-fA-F]{64}(?![0-9a-fA-F])")


@dataclass
class RedactionConfig:
    """Configuration for sensitive data redaction."""

    mask: str = "***REDACTED***"

    # Matched case-insensitively as substrings of dict keys
    sensitive_keys: list[str] = field(default_factory=lambda: [
        "private_key",
        "privatekey",
        "execution_private_key",
        "secret",
        "password",
        "api_key",
        "apikey",
        "authorization",
        "x-payment",
        "x_payment",
        "payment_header",
        "signature",
        "mnemonic",
        "seed",
    ])

    # (pattern, replacement) applied to every string value
    patterns: list[tuple[str, str]] = field(default_factory=lambda: [
        # "private key 0xabc..." / "private_key=abc..."
        (
            r"(private[_ ]?key[\"']?\s*[:=]?\s*[\"']?)(0x)?[0-9a-fA-F]{64}",
            r"\1***PRIVATE_KEY***",
        ),
        # Bearer tokens
        (r"Bearer\s+[a-zA-Z0-9_\-\.]+", "Bearer ***TOKEN***"),
        # "X-PAYMENT: <base64>"
        (r"(X-PAYMENT[\"']?\s*[:=]\s*[\"']?)[A-Za-z0-9+/=_\-]{16,}", r"\1***PAYMENT***"),
    ])

    show_partial: bool = True
    partial_prefix_length: int = 4
    partial_suffix_length: int = 4
    partial_min_length: int = 12


def redact_sensitive(
    data: Any,
    config: RedactionConfig | None = None,
    depth: int = 0,
    max_depth: int = 10,
) -> Any:
    """
    Recursively redacts sensitive information from data structures.

    Args:
        data: The data to redact (dict, list, str, or primitive)
        config: Redaction configuration
        depth: Current recursion depth
        max_depth: Maximum recursion depth

    Returns:
        The data with sensitive values redacted
    """
    if config is None:
        config = RedactionConfig()

    if depth > max_depth:
        return config.mask

    if isinstance(data, dict):
        return _redact_dict(data, config, depth, max_depth)
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive(item, config, depth + 1, max_depth) for item in data]
    elif isinstance(data, str):
        return _redact_string(data, config)
    else:
        return data


def _redact_dict(data: dict, config: RedactionConfig, depth: int, max_depth: int) -> dict:
    result = {}
    sensitive_keys_lower = [k.lower() for k in config.sensitive_keys]

    for key, value in data.items():
        key_lower = str(key).lower()
        is_sensitive = any(sensitive in key_lower for sensitive in sensitive_keys_lower)

        if is_sensitive and isinstance(value, str):
            result[key] = _mask_value(value, config)
        elif is_sensitive and isinstance(value, (dict, list)):
            result[key] = config.mask
        else:
            result[key] = redact_sensitive(value, config, depth + 1, max_depth)

    return result


def _redact_string(value: str, config: RedactionConfig) -> str:
    result = value
    for pattern, replacement in config.patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
    return result


def _mask_value(value: str, config: RedactionConfig) -> str:
    """Masks a sensitive value. Keys that look like signing keys are never partially shown."""
    if not value:
        return config.mask

    if PRIVATE_KEY_PATTERN.fullmatch(value.strip()):
        return config.mask

    if config.show_partial and len(value) >= config.partial_min_length:
        prefix = value[:config.partial_prefix_length]
        suffix = value[-config.partial_suffix_length:]
        middle_len = len(value) - config.partial_prefix_length - config.partial_suffix_length
        return f"{prefix}{'*' * min(middle_len, 8)}{suffix}"

    return config.mask


def redact_error_message(message: str, secrets: list[str] | None = None) -> str:
    """
    Redacts sensitive patterns from an error message.

    Args:
        message: Raw error text
        secrets: Known secret values (e.g. the configured signing key) to
            remove verbatim wherever they appear
    """
    config = RedactionConfig(show_partial=False)
    result = message
    for secret in secrets or []:
        if not secret:
            continue
        stripped = secret[2:] if secret.lower().startswith("0x") else secret
        result = result.replace(secret, config.mask)
        if stripped:
            result = result.replace(stripped, config.mask)
    return _redact_string(result, config)
