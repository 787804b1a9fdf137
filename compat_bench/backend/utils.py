import re
import time
from functools import wraps

# characters that are not allowed in an XML 1.0 document
_INVALID_XML_CHARS = re.compile(r"[^\x09\x0a\x0d\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


def time_it(func: any):
    """returns result and elapsed time"""

    @wraps(func)
    def inner(*args, **kwargs):
        pref = time.perf_counter()
        result = func(*args, **kwargs)
        delta = time.perf_counter() - pref
        return result, delta

    return inner


def sanitize_stack_trace(trace: str | None) -> str | None:
    """Strip out characters that would make a result report unreadable.

    Examples:
        >>> sanitize_stack_trace("boom\\x00\\x07 at line 1")
        'boom at line 1'
        >>> sanitize_stack_trace(None) is None
        True
    """
    if trace is None:
        return None
    return _INVALID_XML_CHARS.sub("", trace)


def create_abi_id(abi: str, name: str) -> str:
    """Examples:
    >>> create_abi_id("arm64-v8a", "BleSecureClientConnect")
    'arm64-v8a BleSecureClientConnect'
    """
    return f"{abi} {name}"


def parse_abi_id(abi_id: str) -> tuple[str, str]:
    """reverse of create_abi_id, returns (abi, name)"""
    parts = abi_id.split(" ", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        msg = f"Not an abi id: {abi_id!r}"
        raise ValueError(msg)
    return parts[0], parts[1]


def ms_since(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
