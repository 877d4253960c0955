"""Escaping of untrusted text before it is placed into a log line.

Request-derived strings (URI, hostname, unique id, messages) pass through
log_escape so that a single line can never be split or have its bracketed
fields corrupted.
"""

from typing import Union

_NAMED_ESCAPES = {
    0x08: "\\b",
    0x09: "\\t",
    0x0A: "\\n",
    0x0B: "\\v",
    0x0D: "\\r",
    0x5C: "\\\\",
}


def _to_bytes(text: Union[str, bytes]) -> bytes:
    if isinstance(text, bytes):
        return text
    return text.encode("utf-8", errors="surrogateescape")


def log_escape(text: Union[str, bytes, None], allow_quotes: bool = False) -> str:
    """Escape text for inclusion in a log line.

    Args:
        text: Untrusted input; bytes are escaped as-is, str is UTF-8 encoded
        allow_quotes: Leave double quotes untouched

    Returns:
        Printable ASCII string ("" for None)
    """
    if text is None:
        return ""

    out = []
    for byte in _to_bytes(text):
        if byte == 0x22 and not allow_quotes:
            out.append('\\"')
        elif byte in _NAMED_ESCAPES:
            out.append(_NAMED_ESCAPES[byte])
        elif byte < 0x20 or byte > 0x7E:
            out.append(f"\\x{byte:02x}")
        else:
            out.append(chr(byte))
    return "".join(out)


def log_escape_nq(text: Union[str, bytes, None]) -> str:
    """Escape text for a log line, leaving double quotes as they are."""
    return log_escape(text, allow_quotes=True)
