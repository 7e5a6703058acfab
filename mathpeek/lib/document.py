'''
A minimal, read-only view of an editor document: its text, identity and version, and conversion
between absolute character offsets and (line, column) positions.

Offsets count Python characters (code points) from the start of the text. Lines are separated by
'\\n' only; a '\\r' before it is treated as an ordinary character of the line.
'''

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import NamedTuple


class Position(NamedTuple):
    line: int
    col: int


@dataclass(frozen = True)
class TextDocument:
    uri: str
    text: str
    version: int = 0
    _line_starts: tuple = field(init = False, repr = False, compare = False)

    def __post_init__(self):
        starts = [0]
        index = self.text.find('\n')
        while index != -1:
            starts.append(index + 1)
            index = self.text.find('\n', index + 1)
        object.__setattr__(self, '_line_starts', tuple(starts))

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def position_at(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self.text)))
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return Position(line, offset - self._line_starts[line])

    def offset_at(self, line: int, col: int) -> int:
        if line < 0:
            return 0
        if line >= len(self._line_starts):
            return len(self.text)

        start = self._line_starts[line]
        end = (self._line_starts[line + 1] - 1 if line + 1 < len(self._line_starts)
               else len(self.text))
        return start + max(0, min(col, end - start))

    def with_text(self, text: str) -> TextDocument:
        '''Returns the next version of this document, holding the given text.'''
        return TextDocument(self.uri, text, self.version + 1)
