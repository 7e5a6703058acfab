from mathpeek.lib import cache
from mathpeek.lib.settings import DocumentSettings

import unittest
from unittest.mock import patch
from hamcrest import *

import os
import tempfile
import time


class CacheTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp_dir_context = tempfile.TemporaryDirectory()
        self.tmp_dir = self.tmp_dir_context.__enter__()
        self.cache_dir = os.path.join(self.tmp_dir, 'cache')
        self.cache = cache.RenderCache(self.cache_dir)

    def tearDown(self):
        self.tmp_dir_context.__exit__(None, None, None)


    def age(self, path, secs):
        t = time.time() - secs
        os.utime(path, (t, t))


    def test_key_determinism(self):
        settings = DocumentSettings(packages = ('physics',), preamble = '\\usepackage{physics}')
        same_settings = DocumentSettings(packages = ('physics',), preamble = '\\usepackage{physics}')

        key = cache.compute_key('x^2', settings, 3, 'light')
        self.assertEqual(key, cache.compute_key('x^2', same_settings, 3, 'light'))
        self.assertEqual(cache.KEY_LENGTH, len(key))
        self.assertRegex(key, '^[0-9a-f]+$')

        for other in [
            cache.compute_key('x^3', settings, 3, 'light'),
            cache.compute_key('x^2', settings, 4, 'light'),
            cache.compute_key('x^2', settings, None, 'light'),
            cache.compute_key('x^2', settings, 3, 'dark'),
            cache.compute_key('x^2', DocumentSettings(), 3, 'light'),
            cache.compute_key('x^2', DocumentSettings(packages = ('physics',)), 3, 'light'),
        ]:
            self.assertNotEqual(key, other)


    def test_dark_key_suffix(self):
        key = cache.compute_key('x', DocumentSettings(), None, 'dark')
        self.assertTrue(key.endswith('-dark'))
        self.assertEqual(cache.compute_key('x', DocumentSettings(), None, 'light') + '-dark', key)


    def test_class_settings_do_not_affect_key(self):
        self.assertEqual(
            cache.compute_key('x', DocumentSettings(), None, 'light'),
            cache.compute_key('x', DocumentSettings(document_class = 'article',
                                                    class_options = ('11pt',)), None, 'light'))


    def test_store_and_lookup(self):
        self.assertIsNone(self.cache.lookup('abc'))

        entry = self.cache.store('abc', {'svg': b'<svg/>'})
        self.assertEqual(os.path.join(self.cache_dir, 'abc.svg'), entry.artifact_path)
        self.assertIsNone(entry.fallback_path)
        self.assertEqual('svg', entry.format)

        with open(entry.artifact_path, 'rb') as reader:
            self.assertEqual(b'<svg/>', reader.read())

        self.assertEqual(entry, self.cache.lookup('abc'))
        assert_that(os.listdir(self.cache_dir), contains_exactly('abc.svg'))


    def test_store_png(self):
        entry = self.cache.store('abc-dark', {'png': b'png'})
        self.assertEqual(os.path.join(self.cache_dir, 'abc-dark.png'), entry.artifact_path)
        self.assertEqual(entry.artifact_path, entry.fallback_path)
        self.assertEqual('png', entry.format)


    def test_store_overwrites(self):
        self.cache.store('abc', {'svg': b'old'})
        entry = self.cache.store('abc', {'svg': b'new'})
        with open(entry.artifact_path, 'rb') as reader:
            self.assertEqual(b'new', reader.read())


    def test_store_nothing(self):
        with self.assertRaises(ValueError):
            self.cache.store('abc', {})


    def test_deleted_file_is_a_miss(self):
        entry = self.cache.store('abc', {'svg': b'<svg/>'})
        os.remove(entry.artifact_path)
        self.assertIsNone(self.cache.lookup('abc'))


    def test_lookup_rebuilt_from_directory(self):
        self.cache.store('abc', {'svg': b'<svg/>'})

        # A new instance has no in-memory records, but the file is the source of truth.
        other = cache.RenderCache(self.cache_dir)
        entry = other.lookup('abc')
        self.assertIsNotNone(entry)
        self.assertEqual(os.path.join(self.cache_dir, 'abc.svg'), entry.artifact_path)


    def test_store_failure(self):
        with patch('os.replace', side_effect = PermissionError('denied')):
            with self.assertRaises(cache.CacheIOError):
                self.cache.store('abc', {'svg': b'<svg/>'})

        # No temporary files left behind.
        self.assertEqual([], os.listdir(self.cache_dir))
        self.assertIsNone(self.cache.lookup('abc'))


    def test_sweep(self):
        old = self.cache.store('old', {'svg': b'1'})
        new = self.cache.store('new', {'png': b'2'})
        self.age(old.artifact_path, 8 * 24 * 60 * 60)

        removed = self.cache.sweep(7 * 24 * 60 * 60)

        self.assertEqual(1, removed)
        self.assertIsNone(self.cache.lookup('old'))
        self.assertEqual(new, self.cache.lookup('new'))


    def test_sweep_zero_max_age(self):
        self.cache.store('a', {'svg': b'1'})
        self.cache.store('b', {'png': b'22'})

        self.cache.sweep(0)

        self.assertEqual(0, self.cache.stats().entry_count)
        self.assertEqual(0, self.cache.stats().total_bytes)


    def test_sweep_temporary_files(self):
        fresh_file = os.path.join(self.cache_dir, '.abc.1234.svg.tmp')
        stale_file = os.path.join(self.cache_dir, '.def.5678.png.tmp')
        for path in [fresh_file, stale_file]:
            with open(path, 'w') as writer:
                writer.write('partial')
        self.age(stale_file, cache.TEMP_MAX_AGE + 60)

        # Neither counts as a cached image.
        self.assertEqual(cache.CacheStats(0, 0), self.cache.stats())

        # Fresh temporary files may belong to a write in progress, even when sweeping everything.
        self.assertEqual(0, self.cache.sweep(0))
        self.assertTrue(os.path.exists(fresh_file))
        self.assertFalse(os.path.exists(stale_file))


    def test_discard(self):
        entry = self.cache.store('abc', {'svg': b'<svg/>'})
        self.cache.discard('abc')

        # The file is still there, so a lookup finds it again.
        self.assertEqual(entry.artifact_path, self.cache.lookup('abc').artifact_path)

        os.remove(entry.artifact_path)
        self.cache.discard('abc')
        self.assertIsNone(self.cache.lookup('abc'))


    def test_stats(self):
        self.assertEqual(cache.CacheStats(0, 0), self.cache.stats())

        self.cache.store('a', {'svg': b'123'})
        self.cache.store('b', {'png': b'4567'})
        self.assertEqual(cache.CacheStats(entry_count = 2, total_bytes = 7), self.cache.stats())


    def test_clear(self):
        self.cache.store('a', {'svg': b'123'})
        self.cache.store('b', {'png': b'4567'})

        self.cache.clear()

        self.assertEqual([], os.listdir(self.cache_dir))
        self.assertIsNone(self.cache.lookup('a'))
        self.assertEqual(cache.CacheStats(0, 0), self.cache.stats())
