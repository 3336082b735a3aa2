"""
Stateless encoding helpers shared by the composer and the SMTP session.

Covers address validation, quoted-printable bodies, RFC 2047 header words,
header folding, SMTP dot-stuffing and RFC 3461 xtext.
"""

import re
from typing import Iterable, Union

from ..common.models import User

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

MAX_LOCAL_PART_LENGTH = 64
MAX_DOMAIN_LENGTH = 255
MAX_HEADER_LINE_LENGTH = 78
MAX_ENCODED_WORD_LENGTH = 75

_ENCODED_WORD_PREFIX = "=?UTF-8?Q?"
_ENCODED_WORD_SUFFIX = "?="


def is_valid_email(email: str) -> bool:
    """
    Check an address against a simplified RFC 5322 grammar.

    Args:
        email: The bare address (no display name).

    Returns:
        True if the address is acceptable.
    """
    if not email or not EMAIL_PATTERN.match(email):
        return False

    parts = email.split("@")
    if len(parts) != 2:
        return False

    local, domain = parts
    if len(local) > MAX_LOCAL_PART_LENGTH:
        return False
    if len(domain) > MAX_DOMAIN_LENGTH:
        return False
    if "." not in domain:
        return False

    return len(domain.rsplit(".", 1)[-1]) >= 2


def validate_emails(emails: Iterable[str]) -> list[str]:
    """Return the invalid addresses from ``emails``, keeping their order."""
    return [email for email in emails if not is_valid_email(email)]


def encode(text: str) -> bytes:
    """Encode text to UTF-8 bytes."""
    return text.encode("utf-8")


def decode(data: bytes) -> str:
    """
    Decode UTF-8 bytes to text.

    Raises:
        UnicodeDecodeError: If ``data`` is not valid UTF-8.
    """
    return data.decode("utf-8")


def encode_quoted_printable(
    text: Union[str, bytes], line_length: int = 76
) -> str:
    """
    Quoted-printable encode a body (RFC 2045).

    Line breaks in the input (LF or CRLF) become CRLF hard breaks; a bare CR is
    escaped. Soft breaks keep every output line within ``line_length``.

    Args:
        text: Body text, or raw bytes.
        line_length: Maximum output line length including the soft break ``=``.

    Returns:
        The encoded body.
    """
    data = encode(text) if isinstance(text, str) else bytes(text)
    limit = max(line_length - 3, 1)
    result: list[str] = []
    current = 0
    i = 0
    size = len(data)

    while i < size:
        byte = data[i]

        if byte == 0x0A:
            result.append("\r\n")
            current = 0
            i += 1
            continue

        if byte == 0x0D and i + 1 < size and data[i + 1] == 0x0A:
            result.append("\r\n")
            current = 0
            i += 2
            continue

        if byte == 0x0D:
            encoded = "=0D"
        else:
            is_whitespace = byte in (0x20, 0x09)
            next_is_break = i + 1 >= size or data[i + 1] in (0x0A, 0x0D)
            needs_encoding = (
                (byte < 32 and not is_whitespace)
                or byte > 126
                or byte == 0x3D
                or (is_whitespace and next_is_break)
            )
            encoded = f"={byte:02X}" if needs_encoding else chr(byte)

        if current + len(encoded) > limit:
            result.append("=\r\n")
            current = 0

        result.append(encoded)
        current += len(encoded)
        i += 1

    return "".join(result)


def _q_encode_char(char: str) -> str:
    """Q-encode one character for an RFC 2047 encoded-word."""
    out = []
    for byte in encode(char):
        if byte == 0x20:
            out.append("_")
        elif 33 <= byte <= 126 and byte not in (0x3F, 0x3D, 0x5F):
            out.append(chr(byte))
        else:
            out.append(f"={byte:02X}")
    return "".join(out)


def encode_header(text: str) -> str:
    """
    Encode a header value as RFC 2047 words when it contains non-ASCII.

    Long values are split into several encoded-words separated by a space,
    none longer than 75 characters and none splitting a character.

    Args:
        text: The header value.

    Returns:
        ``text`` unchanged when it is pure ASCII, otherwise encoded words.
    """
    if text.isascii():
        return text

    budget = (
        MAX_ENCODED_WORD_LENGTH
        - len(_ENCODED_WORD_PREFIX)
        - len(_ENCODED_WORD_SUFFIX)
    )
    words: list[str] = []
    chunk = ""
    for char in text:
        piece = _q_encode_char(char)
        if chunk and len(chunk) + len(piece) > budget:
            words.append(chunk)
            chunk = ""
        chunk += piece
    if chunk:
        words.append(chunk)

    return " ".join(
        f"{_ENCODED_WORD_PREFIX}{word}{_ENCODED_WORD_SUFFIX}" for word in words
    )


def fold_header(name: str, value: str) -> str:
    """
    Render ``name: value`` folded at spaces (RFC 5322 section 2.2.3).

    Tokens longer than the limit are kept whole; the line stays valid, only
    longer than recommended.
    """
    line = f"{name}: {value}"
    if len(line) <= MAX_HEADER_LINE_LENGTH:
        return line

    lines: list[str] = []
    current = f"{name}:"
    has_token = False
    for token in value.split(" "):
        candidate = f"{current} {token}"
        if has_token and len(candidate) > MAX_HEADER_LINE_LENGTH:
            lines.append(current)
            current = f" {token}"
        else:
            current = candidate
        has_token = True
    lines.append(current)
    return "\r\n".join(lines)


def quote_string(value: str) -> str:
    """Render a value as an RFC 2822 quoted-string."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_address(user: User) -> str:
    """
    Render a User for an address header.

    ASCII display names are quoted; non-ASCII ones become RFC 2047 words
    (encoded-words may not appear inside a quoted string). The address itself
    is never encoded.
    """
    if not user.name:
        return user.email
    if user.name.isascii():
        return f"{quote_string(user.name)} <{user.email}>"
    return f"{encode_header(user.name)} <{user.email}>"


def apply_dot_stuffing(data: str) -> str:
    """Double every leading dot so content cannot end the DATA phase."""
    result = data.replace("\r\n.", "\r\n..")
    if result.startswith("."):
        result = "." + result
    return result


def xtext_encode(value: str) -> str:
    """Encode a value as RFC 3461 xtext (used for ENVID)."""
    out = []
    for byte in encode(value):
        if 33 <= byte <= 126 and byte not in (0x2B, 0x3D):
            out.append(chr(byte))
        else:
            out.append(f"+{byte:02X}")
    return "".join(out)
