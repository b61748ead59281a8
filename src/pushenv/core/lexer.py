"""
Lossless .env file lexer.

Tokenizes .env content into a stream that reconstructs byte-for-byte:
    write(parse(content)) == content

Key/value tokens carry the unquoted value plus the quote character the
value was written with, so derived files can keep the same quoting.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum


class TokenType(Enum):
    """Token types for .env file parsing."""
    COMMENT = "comment"
    BLANK_LINE = "blank_line"
    KEY_VALUE = "key_value"


QUOTE_CHARS = ('"', "'")


@dataclass
class Token:
    """A single line of a .env file."""
    type: TokenType
    raw: str  # Original text, preserves everything
    key: Optional[str] = None
    value: Optional[str] = None
    has_export: bool = False
    quote: str = ""  # '"', "'" or "" for unquoted values

    def __repr__(self):
        if self.type == TokenType.KEY_VALUE:
            export = "export " if self.has_export else ""
            return f"Token({self.type.value}, {export}{self.key}={self.quote}{self.value}{self.quote})"
        return f"Token({self.type.value}, {repr(self.raw[:20])}...)"


class Lexer:
    """
    Lossless lexer for .env files.

    Blank lines and full-line comments become their own tokens; every other
    line containing '=' is split on the first '='.
    """

    def __init__(self, content: str):
        self.content = content
        self.lines = content.splitlines(keepends=True)

    def tokenize(self) -> List[Token]:
        return [self._parse_line(line) for line in self.lines]

    def _parse_line(self, line: str) -> Token:
        """Parse a single line into a token."""
        stripped = line.strip()

        if not stripped:
            return Token(type=TokenType.BLANK_LINE, raw=line)

        if stripped.startswith('#'):
            return Token(type=TokenType.COMMENT, raw=line)

        if '=' in stripped:
            has_export = False
            working_line = stripped

            if stripped.startswith('export '):
                has_export = True
                working_line = stripped[7:].lstrip()

            key, value = working_line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if not key:
                return Token(type=TokenType.COMMENT, raw=line)

            # Strip one layer of matching quotes
            quote = ""
            if len(value) >= 2 and value[0] in QUOTE_CHARS and value[-1] == value[0]:
                quote = value[0]
                value = value[1:-1]

            return Token(
                type=TokenType.KEY_VALUE,
                raw=line,
                key=key,
                value=value,
                has_export=has_export,
                quote=quote,
            )

        # Default: treat as comment/unknown
        return Token(type=TokenType.COMMENT, raw=line)


def parse(content: str) -> List[Token]:
    """
    Parse .env file content into tokens.

    Args:
        content: String content of .env file

    Returns:
        List of Token objects
    """
    return Lexer(content).tokenize()


def write(tokens: List[Token]) -> str:
    """Reconstruct .env content from tokens."""
    return ''.join(token.raw for token in tokens)


def get_keys(tokens: List[Token]) -> Dict[str, str]:
    """
    Extract key-value pairs from tokens, in file order.

    A key defined twice keeps its first position and its last value.
    """
    return {
        token.key: token.value
        for token in tokens
        if token.type == TokenType.KEY_VALUE and token.key
    }


def parse_env(content: str) -> Dict[str, str]:
    """Parse .env content straight into an ordered key -> value mapping."""
    return get_keys(parse(content))


def format_line(key: str, value: str, quote: str = "", has_export: bool = False) -> str:
    """Render one KEY=value line (without newline)."""
    export_prefix = "export " if has_export else ""
    return f"{export_prefix}{key}={quote}{value}{quote}"
