'''
Extracts the document-level LaTeX settings (extra packages and custom preamble) that apply to
every equation rendered from a document.

Settings come from '#+LATEX_HEADER:' lines appearing before the first heading. Each one is kept
verbatim as part of the preamble, and any '\\usepackage' declarations in it also contribute to the
package list.
'''

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Optional

# Packages loaded for every equation, regardless of the document.
BASE_PACKAGES = (
    ('inputenc', 'utf8'),
    ('fontenc', 'T1'),
    ('amsmath', None),
    ('amssymb', None),
    ('amsfonts', None),
    ('mathtools', None),
    ('bm', None),
    ('xcolor', None),
)

BASE_PACKAGE_NAMES = frozenset(name for name, _ in BASE_PACKAGES)

HEADING_RE = re.compile(r'^\*+\s')
HEADER_RE = re.compile(r'^#\+LATEX_HEADER:\s*(?P<directive>.+)$', re.IGNORECASE)
CLASS_RE = re.compile(r'^#\+LATEX_CLASS:\s*(?P<name>\w+)\s*$', re.IGNORECASE)
CLASS_OPTIONS_RE = re.compile(r'^#\+LATEX_CLASS_OPTIONS:\s*(?P<options>.+)$', re.IGNORECASE)

USEPACKAGE_RE = re.compile(
    r'''
    \\usepackage
    (\[ (?P<options> [^\]]* ) \])?
    \{ (?P<names> [^}]+ ) \}
    ''',
    re.VERBOSE)


@dataclass(frozen = True)
class DocumentSettings:
    packages: tuple = ()
    preamble: str = ''
    document_class: Optional[str] = None
    class_options: tuple = ()


def _split_options(options: str) -> tuple:
    return tuple(opt.strip() for opt in options.strip().strip('[]').split(',') if opt.strip())


def extract_settings(text: str) -> DocumentSettings:
    packages: list[str] = []
    preamble_lines: list[str] = []
    document_class = None
    class_options: tuple = ()

    for line in text.split('\n'):
        if HEADING_RE.match(line):
            break

        header_match = HEADER_RE.match(line.rstrip('\r'))
        if header_match:
            directive = header_match['directive'].strip()

            for pkg_match in USEPACKAGE_RE.finditer(directive):
                for name in pkg_match['names'].split(','):
                    name = name.strip()
                    if name and name not in BASE_PACKAGE_NAMES and name not in packages:
                        packages.append(name)

            preamble_lines.append(directive)
            continue

        class_match = CLASS_RE.match(line.rstrip('\r'))
        if class_match:
            document_class = class_match['name']
            continue

        options_match = CLASS_OPTIONS_RE.match(line.rstrip('\r'))
        if options_match:
            class_options = _split_options(options_match['options'])

    return DocumentSettings(packages = tuple(packages),
                            preamble = '\n'.join(preamble_lines),
                            document_class = document_class,
                            class_options = class_options)


def packages_with_options(preamble: str) -> set[str]:
    '''Names of packages that the preamble itself loads with an explicit option list.'''
    return {
        name.strip()
        for match in USEPACKAGE_RE.finditer(preamble)
        if match['options'] is not None
        for name in match['names'].split(',')
    }
