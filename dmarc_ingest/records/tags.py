"""Tokenizer for ``tag=value`` lists as used by DKIM and DMARC TXT records.

Records are split into ``tag=value`` tokens on ``;`` outside of double
quotes, then folded into a mapping. A tag that occurs more than once keeps
the value of its *last* occurrence.
"""

from typing import Dict, Iterable, List, Tuple

from dmarc_ingest.errors import RecordFormatError


def tokenize(text: str, *, quoted_values: bool = False) -> List[Tuple[str, str]]:
    tokens = []
    for segment in _split_segments(text, quoted_values):
        segment = segment.strip()
        if not segment:
            continue
        tag, separator, value = segment.partition("=")
        tag = tag.strip()
        if not separator or not tag:
            raise RecordFormatError(f"Invalid tag: {segment}")
        value = value.strip()
        if quoted_values and len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        tokens.append((tag, value))
    return tokens


def build_tag_map(tokens: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    tags: Dict[str, str] = {}
    for tag, value in tokens:
        tags[tag] = value
    return tags


def split_values(value: str, separator: str) -> List[str]:
    return [v.strip() for v in value.split(separator)]


def _split_segments(text: str, quoted_values: bool) -> List[str]:
    if not quoted_values:
        return text.split(";")
    segments = []
    current: List[str] = []
    in_quotes = False
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        if char == ";" and not in_quotes:
            segments.append("".join(current))
            current = []
        else:
            current.append(char)
    if in_quotes:
        raise RecordFormatError(f"Unterminated quoted value: {text}")
    segments.append("".join(current))
    return segments
