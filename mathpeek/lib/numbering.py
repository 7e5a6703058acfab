'''
Equation numbering. Numbered environments receive sequential numbers, in document order, exactly
as LaTeX would number them had the whole document been compiled.
'''

from __future__ import annotations

from .fragments import MathFragment

import threading
from typing import Dict, Iterable, Optional, Tuple


class EquationNumbering:
    def __init__(self, numbers: Dict[int, int]):
        self._numbers = numbers

    def number_for(self, fragment: MathFragment) -> Optional[int]:
        if not fragment.numbered:
            return None
        return self._numbers.get(fragment.start_offset)

    def __len__(self):
        return len(self._numbers)

    def as_dict(self) -> Dict[int, int]:
        return dict(self._numbers)


def number_equations(fragments: Iterable[MathFragment]) -> EquationNumbering:
    numbers = {}
    counter = 0
    for fragment in fragments:
        if fragment.numbered:
            counter += 1
            numbers[fragment.start_offset] = counter
    return EquationNumbering(numbers)


class NumberingCache:
    '''
    Holds the numbering for the latest known version of each document. A request for any other
    version replaces the old numbering wholesale; numbers are never patched incrementally, since an
    equation added or removed early in a document renumbers everything after it.
    '''

    def __init__(self):
        self._lock = threading.Lock()
        self._by_uri: Dict[str, Tuple[int, EquationNumbering]] = {}

    def get(self, uri: str, version: int, fragments: Iterable[MathFragment]) -> EquationNumbering:
        with self._lock:
            entry = self._by_uri.get(uri)
            if entry is not None and entry[0] == version:
                return entry[1]

            numbering = number_equations(fragments)
            self._by_uri[uri] = (version, numbering)
            return numbering

    def invalidate(self, uri: str):
        with self._lock:
            self._by_uri.pop(uri, None)

    def clear(self):
        with self._lock:
            self._by_uri.clear()

    def __contains__(self, uri):
        with self._lock:
            return uri in self._by_uri
