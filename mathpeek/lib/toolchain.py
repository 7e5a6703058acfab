'''
Drives the external LaTeX toolchain to turn one math fragment into an image.

The preferred route compiles with 'latex' to DVI and converts that to SVG with 'dvisvgm'. If any
part of that fails, we fall back to compiling with 'pdflatex' and rasterising the first page with
'pdftoppm'. Both routes work in a scratch directory, which is always removed afterwards.

All external commands go through an ExternalTool, so that the orchestration can be exercised
without a TeX installation.
'''

from __future__ import annotations

from .config import RenderConfig
from .fragments import MathFragment, ENVIRONMENT, DISPLAY
from .progress import Progress
from .settings import DocumentSettings, BASE_PACKAGES, BASE_PACKAGE_NAMES, packages_with_options

from dataclasses import dataclass
import os
import re
import subprocess
import tempfile
from typing import Optional, Protocol, Sequence
from xml.etree import ElementTree

NAME = 'toolchain'  # For progress/error messages

LIGHT = 'light'
DARK  = 'dark'

NO_FRAGMENT           = 'no-fragment'
TOOLCHAIN_UNAVAILABLE = 'toolchain-unavailable'
COMPILATION_FAILED    = 'compilation-failed'
CONVERSION_FAILED     = 'conversion-failed'
CACHE_IO_ERROR        = 'cache-io-error'

AVAILABLE   = 'available'
DEGRADED    = 'degraded'
UNAVAILABLE = 'unavailable'

JOB = 'equation'
DOCUMENT_CLASS = r'\documentclass[preview,border=2pt,varwidth]{standalone}'

ERROR_LINE_NUMBER_RE = re.compile(r'(^|\n)l\.(?P<n>[0-9]+)')


@dataclass(frozen = True)
class ToolResult:
    exit_code: Optional[int]
    stdout: str = ''
    stderr: str = ''
    timed_out: bool = False
    not_found: bool = False

    @property
    def output(self) -> str:
        return '\n'.join(part for part in (self.stdout, self.stderr) if part)


class ExternalTool(Protocol):
    def run(self, cmd: str, args: Sequence[str], cwd: str, timeout: float) -> ToolResult:
        ...


class SubprocessTool:
    '''Runs commands for real.'''

    def run(self, cmd: str, args: Sequence[str], cwd: str, timeout: float) -> ToolResult:
        try:
            proc = subprocess.run([cmd, *args],
                                  cwd = cwd,
                                  stdin = subprocess.DEVNULL,  # Supposed to be non-interactive!
                                  stdout = subprocess.PIPE,
                                  stderr = subprocess.PIPE,
                                  encoding = 'utf-8',
                                  errors = 'replace',
                                  timeout = timeout)

        except FileNotFoundError as e:
            return ToolResult(None, stderr = f'"{cmd}" not found: {e}', not_found = True)

        except subprocess.TimeoutExpired as e:
            def text(out):
                return out.decode('utf-8', 'replace') if isinstance(out, bytes) else (out or '')
            return ToolResult(None, stdout = text(e.stdout), stderr = text(e.stderr),
                              timed_out = True)

        return ToolResult(proc.returncode, stdout = proc.stdout, stderr = proc.stderr)


class CommandException(Exception):
    def __init__(self, msg: str, output: str, not_found: bool = False):
        super().__init__(msg)
        self.output = output
        self.not_found = not_found


def check_run(tool: ExternalTool,
              cmd: str,
              args: Sequence[str],
              cwd: str,
              timeout: float,
              expected_output_file: str) -> ToolResult:
    command_str = ' '.join([cmd, *args])
    result = tool.run(cmd, args, cwd, timeout)

    if result.not_found:
        raise CommandException(f'"{cmd}" not found', result.output, not_found = True)

    if result.timed_out:
        raise CommandException(f'"{command_str}" timed out, after {timeout} secs',
                               result.output)

    if result.exit_code != 0:
        raise CommandException(f'"{command_str}" returned error code {result.exit_code}',
                               result.output)

    # The scratch directory starts out empty, so the file's existence is enough.
    if not os.path.isfile(os.path.join(cwd, expected_output_file)):
        raise CommandException(
            f'"{command_str}" did not create expected file "{expected_output_file}"',
            result.output)

    return result


def tex_error(output: str) -> Optional[str]:
    '''Finds the first Tex error message (a line beginning with '!') in a command's output.'''
    return next((line[1:].strip() for line in output.splitlines() if line.startswith('!')),
                None)


@dataclass(frozen = True)
class Rendered:
    artifacts: dict  # format -> bytes

    @property
    def format(self) -> str:
        return 'svg' if 'svg' in self.artifacts else 'png'

    @property
    def data(self) -> bytes:
        return self.artifacts[self.format]


@dataclass(frozen = True)
class RenderFailure:
    kind: str
    message: str
    output: str = ''
    tex: str = ''


@dataclass(frozen = True)
class Availability:
    available: bool
    message: str
    level: str


@dataclass
class _Attempt:
    route: str
    compiled: bool = False
    error: Optional[CommandException] = None

    @property
    def tex_message(self) -> Optional[str]:
        return tex_error(self.error.output) if self.error else None


def body_for(fragment: MathFragment) -> str:
    '''The Latex code placed inside the document body for this fragment.'''
    if fragment.kind == ENVIRONMENT:
        return fragment.raw
    elif fragment.kind == DISPLAY:
        return f'\\begin{{equation*}}\n{fragment.content}\n\\end{{equation*}}'
    else:
        return f'$\\displaystyle {fragment.content}$'


def validate_svg(svg_bytes: bytes):
    '''Raises CommandException unless the SVG is well-formed and non-empty.'''
    try:
        element = ElementTree.fromstring(svg_bytes)
    except ElementTree.ParseError as e:
        raise CommandException(f'Resulting SVG code is malformed: {e}',
                               svg_bytes.decode('utf-8', 'replace'))

    if element.get('viewBox') in [None, '', '0 0 0 0']:
        raise CommandException('Resulting SVG code is empty',
                               svg_bytes.decode('utf-8', 'replace'))


class Orchestrator:
    def __init__(self, tool: ExternalTool, config: RenderConfig, progress: Progress):
        self.tool = tool
        self.config = config
        self.progress = progress


    def build_document(self,
                       fragment: MathFragment,
                       settings: DocumentSettings,
                       equation_number: Optional[int],
                       variant: str) -> str:
        lines = [DOCUMENT_CLASS, '']

        lines.append('% Essential packages')
        for name, options in BASE_PACKAGES:
            lines.append(f'\\usepackage[{options}]{{{name}}}' if options
                         else f'\\usepackage{{{name}}}')
        lines.append('')

        # Packages declared with options are left for the preamble to load; loading them here
        # without options first would cause an option clash.
        preamble_loaded = packages_with_options(settings.preamble)
        packages = [pkg for pkg in settings.packages
                    if pkg not in BASE_PACKAGE_NAMES and pkg not in preamble_loaded]
        if packages:
            lines.append('% Document packages')
            lines.extend(f'\\usepackage{{{pkg}}}' for pkg in packages)
            lines.append('')

        if settings.preamble:
            lines.append('% Custom preamble')
            lines.append(settings.preamble)
            lines.append('')

        if equation_number is not None:
            lines.append('% Equation numbering')
            lines.append(f'\\setcounter{{equation}}{{{equation_number - 1}}}')
            lines.append('')

        if variant == DARK:
            lines.append('% Dark mode colours')
            lines.append('\\pagecolor{black}')
            lines.append('\\color{white}')
            lines.append('')

        lines.append('\\begin{document}')
        lines.append('')
        lines.append(body_for(fragment))
        lines.append('')
        lines.append('\\end{document}')
        return '\n'.join(lines)


    def _stage(self, cmd: str, args: Sequence[str], cwd: str, output_file: str, msg: str):
        self.progress.progress(NAME, msg = f'Invoking "{cmd}" to {msg}...')
        check_run(self.tool, cmd, args, cwd, self.config.timeout, output_file)


    def _vector(self, build_dir: str, attempt: _Attempt) -> Rendered:
        cfg = self.config
        self._stage(cfg.latex,
                    ['-interaction=nonstopmode', '-halt-on-error', f'{JOB}.tex'],
                    build_dir, f'{JOB}.dvi', 'compile .tex to .dvi')
        attempt.compiled = True

        self._stage(cfg.dvisvgm,
                    ['--no-fonts', '--exact', '--output=%f', f'{JOB}.dvi'],
                    build_dir, f'{JOB}.svg', 'convert .dvi to .svg')

        with open(os.path.join(build_dir, f'{JOB}.svg'), 'rb') as reader:
            svg = reader.read()
        validate_svg(svg)
        return Rendered({'svg': svg})


    def _raster(self, build_dir: str, attempt: _Attempt) -> Rendered:
        cfg = self.config
        self._stage(cfg.pdflatex,
                    ['-interaction=nonstopmode', '-halt-on-error', f'{JOB}.tex'],
                    build_dir, f'{JOB}.pdf', 'compile .tex to .pdf')
        attempt.compiled = True

        self._stage(cfg.pdftoppm,
                    ['-png', '-r', str(cfg.dpi), '-singlefile', f'{JOB}.pdf', JOB],
                    build_dir, f'{JOB}.png', 'rasterise .pdf to .png')

        with open(os.path.join(build_dir, f'{JOB}.png'), 'rb') as reader:
            return Rendered({'png': reader.read()})


    def render(self,
               fragment: MathFragment,
               settings: DocumentSettings,
               equation_number: Optional[int],
               variant: str) -> Rendered | RenderFailure:

        tex = self.build_document(fragment, settings, equation_number, variant)
        attempts = []

        with tempfile.TemporaryDirectory(prefix = 'mathpeek-') as build_dir:
            try:
                with open(os.path.join(build_dir, f'{JOB}.tex'), 'w', encoding = 'utf-8') as f:
                    f.write(tex)
            except OSError as e:
                self.progress.error(NAME, msg = 'cannot write .tex file', exception = e,
                                    show_traceback = False)
                return RenderFailure(COMPILATION_FAILED, str(e), tex = tex)

            for route, method in [('vector', self._vector), ('raster', self._raster)]:
                attempt = _Attempt(route)
                attempts.append(attempt)
                try:
                    return method(build_dir, attempt)

                except CommandException as e:
                    attempt.error = e
                    self.progress.warning(NAME, msg = f'{route} rendering failed: {e}')

                except OSError as e:
                    attempt.error = CommandException(str(e), '')
                    self.progress.warning(NAME, msg = f'{route} rendering failed: {e}')

        return self._failure(attempts, tex)


    def _failure(self, attempts: list[_Attempt], tex: str) -> RenderFailure:
        primary, fallback = attempts

        if primary.compiled or fallback.compiled:
            kind = CONVERSION_FAILED
        elif all(a.error is not None and a.error.not_found for a in attempts):
            kind = TOOLCHAIN_UNAVAILABLE
        else:
            kind = COMPILATION_FAILED

        # Prefer whichever attempt produced an actual Tex error message, then the fallback's own
        # diagnostic.
        chosen = next((a for a in attempts if a.tex_message),
                      fallback if fallback.error and fallback.error.output else primary)
        error = chosen.error
        output = error.output if error else ''
        msg = chosen.tex_message or (str(error) if error else 'rendering failed')

        if kind == CONVERSION_FAILED:
            converted = next((a for a in attempts if a.compiled and a.error), None)
            if converted is not None and converted.error is not None:
                msg = str(converted.error)
                output = converted.error.output

        ln_match = ERROR_LINE_NUMBER_RE.search(output)
        highlight_lines = ({int(ln_match['n']), int(ln_match['n']) - 1} if ln_match else None)
        self.progress.error(NAME,
                            msg = msg,
                            output = output,
                            code = tex,
                            highlight_lines = highlight_lines)

        return RenderFailure(kind, msg, output = output, tex = tex)


    def check_availability(self) -> Availability:
        cfg = self.config

        def found(cmd):
            with tempfile.TemporaryDirectory(prefix = 'mathpeek-probe-') as cwd:
                result = self.tool.run(cmd, ['--version'], cwd, cfg.probe_timeout)
            return result.exit_code == 0

        if found(cfg.latex):
            if found(cfg.dvisvgm):
                return Availability(True,
                                    f'LaTeX tools available ({cfg.latex} + {cfg.dvisvgm})',
                                    AVAILABLE)
            return Availability(True,
                                f'{cfg.dvisvgm} not available. SVG output will not be available, '
                                'using PNG fallback.',
                                DEGRADED)

        if found(cfg.pdflatex):
            return Availability(True,
                                f'{cfg.latex} not available, using {cfg.pdflatex} with PNG '
                                'fallback.',
                                DEGRADED)

        return Availability(False,
                            f'{cfg.latex}/{cfg.pdflatex} not found. Please install a LaTeX '
                            'distribution (TeX Live, MiKTeX, or MacTeX).',
                            UNAVAILABLE)
