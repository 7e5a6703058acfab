'''
A content-addressed cache of rendered equations, held in a single flat directory.

Each image is stored as '<key>.svg' or '<key>.png', where the key is a hash of everything that
affects the rendered output. The files themselves are the only record of what is cached; the
in-memory map merely avoids repeated directory lookups, and is rebuilt from the directory as
needed.
'''

from __future__ import annotations

from .settings import DocumentSettings

from dataclasses import dataclass
import hashlib
import json
import os
import threading
import time
import uuid
from typing import Dict, Mapping, Optional

KEY_LENGTH = 16
DARK = 'dark'
FORMATS = ('svg', 'png')  # In order of preference
TEMP_PREFIX = '.'
TEMP_SUFFIX = '.tmp'

# Temporary files older than this (secs) are left over from an interrupted write.
TEMP_MAX_AGE = 60 * 60


class CacheIOError(OSError):
    pass


@dataclass(frozen = True)
class CacheEntry:
    key: str
    artifact_path: str
    fallback_path: Optional[str]
    created_at: float

    @property
    def format(self) -> str:
        return self.artifact_path.rsplit('.', 1)[-1]


@dataclass(frozen = True)
class CacheStats:
    entry_count: int
    total_bytes: int


def compute_key(content: str,
                settings: DocumentSettings,
                equation_number: Optional[int],
                variant: str) -> str:
    data = json.dumps(
        {
            'content': content,
            'packages': list(settings.packages),
            'preamble': settings.preamble,
            'equationNumber': equation_number,
        },
        sort_keys = True,
        ensure_ascii = False)

    digest = hashlib.sha256(data.encode('utf-8')).hexdigest()[:KEY_LENGTH]
    return digest + ('-dark' if variant == DARK else '')


def is_artifact(filename: str) -> bool:
    return (not filename.startswith(TEMP_PREFIX)
            and '.' in filename
            and filename.rsplit('.', 1)[1] in FORMATS)


def is_temporary(filename: str) -> bool:
    return filename.startswith(TEMP_PREFIX) and filename.endswith(TEMP_SUFFIX)



class RenderCache:
    def __init__(self, cache_dir: str):
        self.cache_dir = cache_dir
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        os.makedirs(cache_dir, exist_ok = True)


    def path_for(self, key: str, fmt: str) -> str:
        return os.path.join(self.cache_dir, f'{key}.{fmt}')


    def _scan(self, key: str) -> Optional[CacheEntry]:
        paths = [path for path in (self.path_for(key, fmt) for fmt in FORMATS)
                 if os.path.isfile(path)]
        if not paths:
            return None

        png_path = self.path_for(key, 'png')
        return CacheEntry(key = key,
                          artifact_path = paths[0],
                          fallback_path = png_path if png_path in paths else None,
                          created_at = os.stat(paths[0]).st_mtime)


    def lookup(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)

        try:
            if entry is not None:
                if os.path.isfile(entry.artifact_path):
                    return entry

            entry = self._scan(key)

        except OSError:
            entry = None

        with self._lock:
            if entry is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = entry
        return entry


    def store(self, key: str, artifacts: Mapping[str, bytes]) -> CacheEntry:
        '''
        Writes each artifact (format -> content) into the cache. Each file is written under a
        temporary name first, then renamed into place, so that a concurrent reader (or sweep) never
        sees a partially-written image.
        '''
        formats = [fmt for fmt in FORMATS if fmt in artifacts]
        if not formats:
            raise ValueError(f'no cacheable artifact given for "{key}"')

        try:
            os.makedirs(self.cache_dir, exist_ok = True)
            for fmt in formats:
                tmp_path = os.path.join(self.cache_dir,
                                        f'{TEMP_PREFIX}{key}.{uuid.uuid4().hex}.{fmt}'
                                        f'{TEMP_SUFFIX}')
                try:
                    with open(tmp_path, 'wb') as writer:
                        writer.write(artifacts[fmt])
                    os.replace(tmp_path, self.path_for(key, fmt))
                finally:
                    if os.path.exists(tmp_path):
                        os.remove(tmp_path)

        except OSError as e:
            raise CacheIOError(
                f'cannot write "{key}" to cache directory "{self.cache_dir}": {e}') from e

        entry = CacheEntry(key = key,
                           artifact_path = self.path_for(key, formats[0]),
                           fallback_path = self.path_for(key, 'png') if 'png' in formats else None,
                           created_at = time.time())
        with self._lock:
            self._entries[key] = entry
        return entry


    def discard(self, key: str):
        '''Forgets any in-memory record of the key; the next lookup re-examines the directory.'''
        with self._lock:
            self._entries.pop(key, None)


    def _listdir(self) -> list[str]:
        try:
            return os.listdir(self.cache_dir)
        except FileNotFoundError:
            return []


    def sweep(self, max_age: float) -> int:
        '''
        Deletes cached images last modified more than max_age seconds ago, and returns how many
        were deleted. Temporary files abandoned by interrupted writes (older than TEMP_MAX_AGE) are
        deleted too, but not counted; newer ones may still be in use.
        '''
        now = time.time()
        removed = 0
        for filename in self._listdir():
            path = os.path.join(self.cache_dir, filename)
            try:
                if is_temporary(filename):
                    if now - os.stat(path).st_mtime > TEMP_MAX_AGE:
                        os.remove(path)

                elif is_artifact(filename):
                    if max_age <= 0 or now - os.stat(path).st_mtime > max_age:
                        os.remove(path)
                        removed += 1
            except FileNotFoundError:
                pass  # Already gone

        with self._lock:
            self._entries = {key: entry for key, entry in self._entries.items()
                             if os.path.isfile(entry.artifact_path)}
        return removed


    def clear(self):
        with self._lock:
            self._entries.clear()

        for filename in self._listdir():
            path = os.path.join(self.cache_dir, filename)
            if os.path.isfile(path):
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass


    def stats(self) -> CacheStats:
        count = 0
        total = 0
        for filename in self._listdir():
            if is_artifact(filename):
                try:
                    total += os.stat(os.path.join(self.cache_dir, filename)).st_size
                    count += 1
                except FileNotFoundError:
                    pass
        return CacheStats(entry_count = count, total_bytes = total)
