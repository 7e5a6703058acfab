'''
The public entry point: render the math fragment at a given position in a document, reusing cached
images wherever possible.

A RenderService owns all of its state (document settings, equation numbering, rendered-image
cache, in-flight renders), so independent instances never interfere with one another.

Renders run on a small thread pool. Concurrent requests for the same equation (same cache key)
share a single toolchain run. A caller that stops waiting does not cancel the run; its result is
still cached for next time.
'''

from __future__ import annotations

from .cache import RenderCache, CacheIOError, CacheStats, compute_key
from .config import RenderConfig
from .document import TextDocument
from .fragments import MathFragment, find_fragments, fragment_at
from .numbering import NumberingCache
from .progress import Progress
from .settings import DocumentSettings, extract_settings
from .toolchain import (ExternalTool, SubprocessTool, Orchestrator, Availability, Rendered,
                        RenderFailure, body_for)
from .toolchain import (LIGHT, DARK, NO_FRAGMENT, TOOLCHAIN_UNAVAILABLE, COMPILATION_FAILED,
                        CONVERSION_FAILED, CACHE_IO_ERROR)

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import os
import threading
from typing import Dict, List, Optional, Tuple, Union

NAME = 'mathpeek'  # For progress/error messages

__all__ = [
    'RenderService', 'RenderResult', 'RenderError', 'LIGHT', 'DARK', 'NO_FRAGMENT',
    'TOOLCHAIN_UNAVAILABLE', 'COMPILATION_FAILED', 'CONVERSION_FAILED', 'CACHE_IO_ERROR',
]


@dataclass(frozen = True)
class RenderResult:
    fragment: MathFragment
    equation_number: Optional[int]
    variant: str
    key: str
    format: str
    data: bytes
    artifact_path: Optional[str] = None
    fallback_path: Optional[str] = None
    cached: bool = False

    @property
    def ok(self):
        return True


@dataclass(frozen = True)
class RenderError:
    kind: str
    message: str
    fragment: Optional[MathFragment] = None
    output: str = ''

    @property
    def ok(self):
        return False

    @property
    def source(self) -> str:
        return self.fragment.raw if self.fragment else ''


Outcome = Union[RenderResult, RenderError]


def _completed(value) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


class RenderService:
    def __init__(self,
                 cache_root: str,
                 tool: Optional[ExternalTool] = None,
                 config: Optional[RenderConfig] = None,
                 progress: Optional[Progress] = None):

        self.config = config or RenderConfig()
        self.progress = progress or Progress()
        self.cache = RenderCache(os.path.join(cache_root, self.config.cache_subdir))
        self.orchestrator = Orchestrator(tool or SubprocessTool(), self.config, self.progress)

        self._numbering = NumberingCache()
        self._lock = threading.Lock()
        self._documents: Dict[str, Tuple[int, List[MathFragment], DocumentSettings]] = {}
        self._in_flight: Dict[str, Future] = {}
        self._availability: Optional[Availability] = None
        self._executor = ThreadPoolExecutor(max_workers = self.config.workers,
                                            thread_name_prefix = 'mathpeek-render')

        removed = self.cache.sweep(self.config.max_age)
        if removed:
            self.progress.progress(NAME, msg = f'Removed {removed} expired cache file(s)')


    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown()


    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait = wait)


    def _analyse(self, document: TextDocument) -> Tuple[List[MathFragment], DocumentSettings]:
        with self._lock:
            entry = self._documents.get(document.uri)
            if entry is not None and entry[0] == document.version:
                return entry[1], entry[2]

        fragments = find_fragments(document.text)
        settings = extract_settings(document.text)
        with self._lock:
            self._documents[document.uri] = (document.version, fragments, settings)
        return fragments, settings


    def fragments(self, document: TextDocument) -> List[MathFragment]:
        return list(self._analyse(document)[0])


    def settings(self, document: TextDocument) -> DocumentSettings:
        return self._analyse(document)[1]


    def equation_number(self, document: TextDocument, fragment: MathFragment) -> Optional[int]:
        if not fragment.numbered:
            return None
        fragments, _ = self._analyse(document)
        return self._numbering.get(document.uri, document.version, fragments).number_for(fragment)


    def forget(self, document: TextDocument):
        '''Drops everything held about the given document (e.g., when it is closed).'''
        with self._lock:
            self._documents.pop(document.uri, None)
        self._numbering.invalidate(document.uri)


    def submit_render(self, document: TextDocument, offset: int, variant: str = LIGHT) -> Future:
        fragments, settings = self._analyse(document)
        fragment = fragment_at(fragments, offset)
        if fragment is None:
            return _completed(RenderError(NO_FRAGMENT, f'No LaTeX fragment at offset {offset}'))

        equation_number = self.equation_number(document, fragment)
        key = compute_key(body_for(fragment), settings, equation_number, variant)

        result = self._cached_result(key, fragment, equation_number, variant)
        if result is not None:
            self.progress.cache_hit(NAME, resource = key)
            return _completed(result)

        if self._availability is not None and not self._availability.available:
            return _completed(RenderError(TOOLCHAIN_UNAVAILABLE,
                                          self._availability.message,
                                          fragment))

        with self._lock:
            future = self._in_flight.get(key)
            if future is None:
                future = self._executor.submit(self._render, key, fragment, settings,
                                               equation_number, variant)
                self._in_flight[key] = future
        return future


    def render_fragment_at(self, document: TextDocument, offset: int,
                           variant: str = LIGHT) -> Outcome:
        return self.submit_render(document, offset, variant).result()


    def _cached_result(self, key, fragment, equation_number, variant) -> Optional[RenderResult]:
        '''
        Reads a previously-rendered image from the cache. An image that cannot be read counts as a
        miss (and is forgotten), so that the equation gets rendered again.
        '''
        entry = self.cache.lookup(key)
        if entry is None:
            return None

        try:
            with open(entry.artifact_path, 'rb') as reader:
                data = reader.read()
        except OSError as e:
            self.progress.warning(NAME, msg = f'Cached image unreadable, re-rendering: {e}')
            self.cache.discard(key)
            return None

        return RenderResult(fragment = fragment,
                            equation_number = equation_number,
                            variant = variant,
                            key = entry.key,
                            format = entry.format,
                            data = data,
                            artifact_path = entry.artifact_path,
                            fallback_path = entry.fallback_path,
                            cached = True)


    def _render(self, key, fragment, settings, equation_number, variant) -> Outcome:
        try:
            # Another request may have finished the same equation between our cache lookup and
            # the registration of this job.
            result = self._cached_result(key, fragment, equation_number, variant)
            if result is not None:
                return result

            rendered = self.orchestrator.render(fragment, settings, equation_number, variant)
            if isinstance(rendered, RenderFailure):
                return RenderError(rendered.kind, rendered.message, fragment, rendered.output)

            return self._store(key, fragment, equation_number, variant, rendered)

        except Exception as e:
            self.progress.error(NAME, exception = e)
            return RenderError(COMPILATION_FAILED, str(e), fragment)

        finally:
            with self._lock:
                self._in_flight.pop(key, None)


    def _store(self, key, fragment, equation_number, variant, rendered: Rendered) -> Outcome:
        artifact_path = fallback_path = None
        try:
            entry = self.cache.store(key, rendered.artifacts)
            artifact_path = entry.artifact_path
            fallback_path = entry.fallback_path

        except CacheIOError as e:
            self.progress.warning(NAME, msg = f'Rendered image could not be cached: {e}')

        return RenderResult(fragment = fragment,
                            equation_number = equation_number,
                            variant = variant,
                            key = key,
                            format = rendered.format,
                            data = rendered.data,
                            artifact_path = artifact_path,
                            fallback_path = fallback_path,
                            cached = False)


    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)


    def clear_cache(self):
        self.cache.clear()
        self._numbering.clear()
        with self._lock:
            self._documents.clear()


    def cache_stats(self) -> CacheStats:
        return self.cache.stats()


    def check_toolchain_availability(self, refresh: bool = False) -> Availability:
        if self._availability is None or refresh:
            self._availability = self.orchestrator.check_availability()
            self.progress.progress(NAME, msg = self._availability.message)
        return self._availability
