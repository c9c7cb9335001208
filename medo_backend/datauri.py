import base64
import re
from typing import Tuple

DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[^,;]+=[^,;]+)*;base64,(?P<data>.*)$", re.DOTALL)


def to_data_uri(data: bytes, mime_type: str) -> str:
    """Encode bytes as 'data:<mimetype>;base64,<encoded_data>'."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_uri(uri: str) -> Tuple[str, bytes]:
    match = DATA_URI_RE.match(uri.strip())
    if not match:
        raise ValueError("Expected a base64 data URI: 'data:<mimetype>;base64,<encoded_data>'")
    return match.group("mime"), base64.b64decode(match.group("data"))


def inline_part(uri: str) -> dict:
    """Gemini inline blob part built from a data URI."""
    mime_type, data = parse_data_uri(uri)
    return {"mime_type": mime_type, "data": data}
