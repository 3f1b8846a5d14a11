"""
AAMP Error Types
================

Every codec in this repo signals malformed input with one of these. They all
derive from ValueError so callers that already catch ValueError around file
parsing keep working.

| Error                  | Raised by                | Position info      |
|------------------------|--------------------------|--------------------|
| FormatError            | binary decoder           | byte offset        |
| TruncatedInputError    | binary decoder           | byte offset        |
| TextSyntaxError        | YAML decoder             | line / column      |
| EncodingInvariantError | model, binary encoder    | -                  |
"""

from typing import Optional


class AampError(ValueError):
    """Base class for all parameter archive errors"""


class FormatError(AampError):
    """Binary data does not follow the AAMP v2 layout"""

    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at offset 0x{offset:X})"
        super().__init__(message)


class TruncatedInputError(FormatError):
    """A read ran past the end of the input"""


class TextSyntaxError(AampError):
    """YAML text does not follow the parameter archive grammar"""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)


class EncodingInvariantError(AampError):
    """A value cannot be represented in the binary layout"""
