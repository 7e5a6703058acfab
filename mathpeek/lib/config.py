'''
Tunable parameters for rendering. All have sensible defaults; the command-line front end
overrides some of them from its arguments.
'''

from dataclasses import dataclass

DAY = 24 * 60 * 60


@dataclass
class RenderConfig:
    # Time (secs) allowed for each external command, per stage.
    timeout: float = 10.0

    # Time (secs) allowed for each '--version' probe when checking tool availability.
    probe_timeout: float = 5.0

    # Cached images older than this (secs) are deleted when a service starts.
    max_age: float = 7 * DAY

    # Resolution of the raster (PNG) fallback.
    dpi: int = 150

    latex: str = 'latex'
    pdflatex: str = 'pdflatex'
    dvisvgm: str = 'dvisvgm'
    pdftoppm: str = 'pdftoppm'

    # Threads available for concurrent renders of different equations.
    workers: int = 4

    # Display width limit (px) applied to rendered images.
    svg_max_width: int = 500

    # Sub-directory of the cache root holding rendered images.
    cache_subdir: str = 'latex-preview-cache'
