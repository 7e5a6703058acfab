'''
Finds the LaTeX math fragments embedded in a document.

Four single-line notations are recognised ($...$, $$...$$, \\(...\\) and \\[...\\]), plus
\\begin{env}...\\end{env} math environments, which may span several lines. Where matches overlap,
environments take priority, and otherwise the earliest match wins.

One heuristic is worth knowing about: inline $...$ content beginning with a digit is skipped, to
avoid treating currency amounts ("$5 and $10") as math. This means that '$2x$' is never recognised.
'''

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, Optional

INLINE      = 'inline'
DISPLAY     = 'display'
ENVIRONMENT = 'environment'

NUMBERED_ENVIRONMENTS = frozenset([
    'equation',
    'align',
    'gather',
    'multline',
    'eqnarray',
    'alignat',
    'flalign',
])

MATH_ENVIRONMENTS = frozenset([
    *NUMBERED_ENVIRONMENTS,
    *(f'{name}*' for name in NUMBERED_ENVIRONMENTS),
    'split',
    'aligned',
    'gathered',
    'cases',
    'matrix',
    'pmatrix',
    'bmatrix',
    'vmatrix',
    'Vmatrix',
    'smallmatrix',
])

INLINE_DOLLAR_RE = re.compile(
    r'''
    (?<![\\$]) \$ (?!\$)        # Opening '$', not escaped and not part of '$$'
    (?P<content> [^$\n]+? )
    (?<![\\$]) \$ (?!\$)        # Closing '$', likewise
    ''',
    re.VERBOSE)

DISPLAY_DOLLAR_RE  = re.compile(r'\$\$(?P<content>[^$]+?)\$\$')
INLINE_PAREN_RE    = re.compile(r'\\\((?P<content>.+?)\\\)')
DISPLAY_BRACKET_RE = re.compile(r'\\\[(?P<content>.+?)\\\]')

LINE_PATTERNS = [
    (INLINE_DOLLAR_RE,   INLINE),
    (DISPLAY_DOLLAR_RE,  DISPLAY),
    (INLINE_PAREN_RE,    INLINE),
    (DISPLAY_BRACKET_RE, DISPLAY),
]

ENVIRONMENT_RE = re.compile(
    r'''
    \\begin\{ (?P<env> \w+\*? ) \}
    (?P<content> .*? )
    \\end\{ (?P=env) \}
    ''',
    re.VERBOSE | re.DOTALL)

CURRENCY_RE = re.compile(r'^\d')


@dataclass(frozen = True)
class Span:
    line: int
    start_col: int
    end_col: int
    start_offset: int
    end_offset: int
    end_line: int

    def overlaps(self, other: Span) -> bool:
        return self.start_offset < other.end_offset and other.start_offset < self.end_offset


@dataclass(frozen = True)
class MathFragment:
    raw: str
    content: str
    kind: str
    span: Span
    environment: Optional[str] = None
    numbered: bool = False

    @property
    def start_offset(self) -> int:
        return self.span.start_offset

    @property
    def end_offset(self) -> int:
        return self.span.end_offset

    def contains(self, offset: int) -> bool:
        return self.span.start_offset <= offset <= self.span.end_offset


def is_numbered(env: str) -> bool:
    return not env.endswith('*') and env in NUMBERED_ENVIRONMENTS


def find_fragments_in_line(line: str, line_number: int, line_offset: int) -> list[MathFragment]:
    fragments = []
    for regex, kind in LINE_PATTERNS:
        for match in regex.finditer(line):
            content = match['content']
            if regex is INLINE_DOLLAR_RE and CURRENCY_RE.match(content.strip()):
                continue

            fragments.append(MathFragment(
                raw = match.group(),
                content = content,
                kind = kind,
                span = Span(line = line_number,
                            start_col = match.start(),
                            end_col = match.end(),
                            start_offset = line_offset + match.start(),
                            end_offset = line_offset + match.end(),
                            end_line = line_number)))
    return fragments


def _position(text: str, offset: int) -> tuple[int, int]:
    line = text.count('\n', 0, offset)
    return line, offset - (text.rfind('\n', 0, offset) + 1)


def find_environments(text: str) -> list[MathFragment]:
    fragments = []
    pos = 0
    while (match := ENVIRONMENT_RE.search(text, pos)) is not None:
        env = match['env']
        if env not in MATH_ENVIRONMENTS:
            # Resume just inside a non-math environment (e.g. 'document'), so that math
            # environments nested within it are still found.
            pos = match.start() + 1
            continue

        start_line, start_col = _position(text, match.start())
        end_line, end_col = _position(text, match.end())
        fragments.append(MathFragment(
            raw = match.group(),
            content = match['content'],
            kind = ENVIRONMENT,
            environment = env,
            numbered = is_numbered(env),
            span = Span(line = start_line,
                        start_col = start_col,
                        end_col = end_col,
                        start_offset = match.start(),
                        end_offset = match.end(),
                        end_line = end_line)))
        pos = match.end()

    return fragments


def _priority(fragment: MathFragment) -> int:
    return 0 if fragment.kind == ENVIRONMENT else 1


def deduplicate(candidates: Iterable[MathFragment]) -> list[MathFragment]:
    '''
    Drops candidates overlapping others, considering environments first, and returns the survivors
    ordered by start offset. (Python's sort is stable, so equal keys keep their given order.)
    '''
    kept: list[MathFragment] = []
    for candidate in sorted(candidates, key = lambda f: (_priority(f), f.start_offset)):
        if not any(candidate.span.overlaps(existing.span) for existing in kept):
            kept.append(candidate)

    kept.sort(key = lambda f: f.start_offset)
    return kept


def find_fragments(text: str) -> list[MathFragment]:
    candidates = []
    offset = 0
    for line_number, line in enumerate(text.split('\n')):
        candidates.extend(find_fragments_in_line(line, line_number, offset))
        offset += len(line) + 1

    candidates.extend(find_environments(text))
    return deduplicate(candidates)


def fragment_at(fragments: Iterable[MathFragment], offset: int) -> Optional[MathFragment]:
    return next((fragment for fragment in fragments if fragment.contains(offset)), None)
