'''
Console reporting for mathpeek. Each module reports under its own location name ('toolchain',
'mathpeek') as the LaTeX commands run. Errors come with boxed details: a command's output, or
the generated .tex file with the line Tex complained about highlighted.

Errors are also retained, so a caller (the command-line front end, say) can find out afterwards
whether anything went wrong.
'''

from dataclasses import dataclass, field
import shutil
import traceback
from typing import List, Optional, Set


RESET = '\033[0m'

LINE_NUMBER_COLOUR = '\033[30;1m'
LINE_NUMBER_WIDTH = 4

HIGHLIGHT_COLOUR = '\033[43;30m'


def wrap(text, width):
    line_number = 1
    start_of_line = True

    if text == '':
        yield (1, True, '')
    while text:
        newline_index = text.find('\n')
        if newline_index != -1 and newline_index <= width:
            yield (line_number, start_of_line, text[:newline_index])
            text = text[newline_index + 1:]
            start_of_line = True
            line_number += 1
        else:
            yield (line_number, start_of_line, text[:width])
            text = text[width:]
            start_of_line = False


@dataclass
class Details:
    title: str
    content: str
    show_line_numbers: bool = False
    context_lines: Optional[int] = None
    highlight_lines: Set[int] = field(default_factory = set)


class Message:
    LOCATION_COLOUR = ''
    MSG_COLOUR = ''
    TAG = ''

    def __init__(self, location: str, msg: str, details_list: Optional[List[Details]] = None):
        self._location = location
        self._msg = msg
        self._details_list = details_list or []

    @property
    def location(self):
        return self._location

    @property
    def msg(self):
        return self._msg

    @property
    def details_list(self):
        return list(self._details_list)

    def print(self):
        print(f'{self.LOCATION_COLOUR}{self.TAG}{self._location}:{RESET} '
              f'{self.MSG_COLOUR}{self._msg}{RESET}')

        terminal_width = shutil.get_terminal_size(fallback = (80, 40)).columns
        inner_width = terminal_width - 6

        first = True
        for details in self._details_list:
            if first:
                print(f'  ┌─{"─" * inner_width}─┐')
                first = False
            else:
                print(f'  ├─{"─" * inner_width}─┤')

            if details.show_line_numbers:
                text_width = inner_width - LINE_NUMBER_WIDTH - 1

                for line_number, start_of_line, line in wrap(details.content.rstrip(), text_width):
                    if (details.context_lines is not None and
                        details.highlight_lines and
                        all(abs(line_number - hl) > details.context_lines
                            for hl in details.highlight_lines)):
                        continue

                    n_str = (str(line_number).rjust(LINE_NUMBER_WIDTH) if start_of_line
                             else (' ' * LINE_NUMBER_WIDTH))
                    hl_str = HIGHLIGHT_COLOUR if line_number in details.highlight_lines else ''
                    print(f'  │{LINE_NUMBER_COLOUR}{n_str}{RESET}  '
                          f'{hl_str}{line}{" " * (text_width - len(line))}{RESET} │')

            else:
                for _, _, line in wrap(details.content.rstrip(), inner_width):
                    print(f'  │ {line}{" " * (inner_width - len(line))} │')

        if not first:
            print(f'  └─{"─" * inner_width}─┘')

    def __str__(self):
        return f'{self.TAG}{self._location}: {self._msg}'


class ProgressMsg(Message):
    LOCATION_COLOUR = '\033[32m'
    MSG_COLOUR = ''
    TAG = ''

class WarningMsg(Message):
    LOCATION_COLOUR = '\033[33;1m'
    MSG_COLOUR = '\033[37;1m'
    TAG = '[!] '

class ErrorMsg(Message):
    LOCATION_COLOUR = '\033[31;1m'
    MSG_COLOUR = '\033[37;1m'
    TAG = '[!!] '


class Progress:
    def __init__(self, show_cache_hits = False, quiet = False):
        self._errors = []
        self._show_cache_hits = show_cache_hits
        self._quiet = quiet


    def show(self, msg: Message):
        if not self._quiet:
            msg.print()
        if isinstance(msg, ErrorMsg):
            self._errors.append(msg)
        return msg


    def progress(self, location, *, msg, advice = None):
        details_list = []
        if advice:
            details_list.append(Details('Advice', advice))
        return self.show(ProgressMsg(location, msg, details_list))


    def cache_hit(self, location: str, *, resource: Optional[str] = None):
        obj = ProgressMsg(location,
                          'Using cached value' + (f' for {resource}' if resource else ''))
        return self.show(obj) if self._show_cache_hits else obj


    def warning(self, location, *, msg, output = None):
        details_list = []
        if output:
            details_list.append(Details('Output', output))
        return self.show(WarningMsg(location, msg, details_list))


    def error(self, location, *, msg = None, exception = None, show_traceback = True,
              output = None, code = None, highlight_lines = None, context_lines = 6):
        details_list = []
        if exception:
            msg = (f'{msg}: {str(exception)} ({exception.__class__.__name__})' if msg
                   else str(exception))
            if show_traceback:
                details_list.append(Details('Traceback', ''.join(traceback.format_exc())))

        elif not msg:
            msg = 'error'

        if output:
            details_list.append(Details('Output', output))

        if code:
            details_list.append(Details('Code',
                                        code,
                                        show_line_numbers = True,
                                        highlight_lines = highlight_lines or set(),
                                        context_lines = context_lines))

        return self.show(ErrorMsg(location, msg, details_list))


    def get_errors(self):
        return list(self._errors)


    def clear_errors(self):
        self._errors.clear()
