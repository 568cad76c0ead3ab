"""YAML frontmatter parsing for memory markdown files."""

import re
from typing import Any

import yaml
from loguru import logger

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def parse_frontmatter(raw_content: str) -> tuple[dict[str, Any], str, int]:
    """Split a leading `---` YAML block from markdown content.

    Returns:
        (metadata, body, body_line_offset) where `body_line_offset` is the
        number of lines the frontmatter occupied, so chunk line numbers can be
        mapped back onto the original file.
    """
    match = FRONTMATTER_RE.match(raw_content)
    if not match:
        return {}, raw_content, 0

    block = match.group(1)
    try:
        metadata = yaml.safe_load(block)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring malformed frontmatter: {e}")
        return {}, raw_content, 0

    if not isinstance(metadata, dict):
        metadata = {}

    body = raw_content[match.end() :]
    offset = raw_content[: match.end()].count("\n")
    return {str(k): v for k, v in metadata.items()}, body, offset
