'''
Turns render outcomes into something displayable: a Markdown snippet suitable for an editor hover,
or a complete, static HTML preview page covering many equations.
'''

from __future__ import annotations

from .fragments import INLINE, DISPLAY
from .service import RenderResult, RenderError

import markdown

import base64
import html
import re
from typing import Iterable, Union

SVG_OPEN_RE = re.compile(r'<svg(?P<attrs>[^>]*)>')
XML_DECL_RE = re.compile(r'^\s*<\?xml[^>]*\?>\s*')


def heading(result: RenderResult) -> str:
    if result.equation_number is not None:
        return f'**Equation ({result.equation_number})**'

    fragment = result.fragment
    if fragment.kind == INLINE:
        label = 'Inline'
    elif fragment.kind == DISPLAY:
        label = 'Display'
    else:
        label = f'Environment: {fragment.environment}'
    return f'**{label} Math**'


def scaled_svg(svg: str, max_width: int) -> str:
    svg = XML_DECL_RE.sub('', svg)
    return SVG_OPEN_RE.sub(
        lambda m: f'<svg{m["attrs"]} style="max-width: {max_width}px; height: auto;">',
        svg,
        count = 1)


def image_markup(result: RenderResult, max_width: int) -> str:
    if result.format == 'svg':
        return scaled_svg(result.data.decode('utf-8', 'replace'), max_width)

    if result.artifact_path:
        src = html.escape(result.artifact_path, quote = True)
    else:
        src = f'data:image/png;base64,{base64.b64encode(result.data).decode()}'
    return f'<img src="{src}" style="max-width: {max_width}px;" />'


def code_block(code: str, language: str = 'latex') -> str:
    fence = '```'
    while fence in code:
        fence += '`'
    return f'{fence}{language}\n{code}\n{fence}'


def result_markdown(result: RenderResult, max_width: int = 500) -> str:
    return '\n\n'.join([
        heading(result),
        image_markup(result, max_width),
        '---',
        code_block(result.fragment.raw),
    ]) + '\n'


def error_markdown(error: RenderError) -> str:
    parts = [
        '**LaTeX Preview Error**',
        f'⚠️ {error.message or "Failed to render equation"}',
    ]
    if error.fragment is not None:
        parts += [
            '---',
            '**Source:**',
            code_block(error.fragment.raw),
            '**Rendered (text):**',
            f'`{error.fragment.content.strip()}`',
        ]
    return '\n\n'.join(parts) + '\n'


def as_markdown(outcome: Union[RenderResult, RenderError], max_width: int = 500) -> str:
    if isinstance(outcome, RenderError):
        return error_markdown(outcome)
    return result_markdown(outcome, max_width)


PAGE_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8" />
<title>{title}</title>
<style>
body {{ font-family: sans-serif; max-width: 50em; margin: auto; }}
section.equation {{ border-bottom: 1px solid #ccc; padding: 1em 0; }}
section.error {{ background: #fdd; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
'''


def html_report(title: str,
                outcomes: Iterable[Union[RenderResult, RenderError]],
                max_width: int = 500) -> str:
    md = markdown.Markdown(extensions = ['fenced_code'])
    sections = []
    for outcome in outcomes:
        md.reset()
        fragment = outcome.fragment
        location = (f'line {fragment.span.line + 1}, col {fragment.span.start_col + 1}'
                    if fragment is not None else '')
        css_class = 'equation' + ('' if outcome.ok else ' error')
        sections.append(
            f'<section class="{css_class}" data-location="{location}">\n'
            f'{md.convert(as_markdown(outcome, max_width))}\n'
            '</section>')

    return PAGE_TEMPLATE.format(title = html.escape(title), body = '\n'.join(sections))
