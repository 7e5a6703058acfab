'''
# API entry point

Callers need only 'import mathpeek', then create a RenderService and ask it to render the equation
at a given position in a TextDocument.
'''

from .lib.document import TextDocument, Position
from .lib.fragments import MathFragment, INLINE, DISPLAY, ENVIRONMENT, find_fragments
from .lib.service import (RenderService, RenderResult, RenderError, LIGHT, DARK, NO_FRAGMENT,
                          TOOLCHAIN_UNAVAILABLE, COMPILATION_FAILED, CONVERSION_FAILED,
                          CACHE_IO_ERROR)
from .lib.config import RenderConfig
from .lib.display import as_markdown
