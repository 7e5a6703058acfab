from mathpeek.lib import settings

import unittest
from hamcrest import *

from textwrap import dedent


class SettingsTestCase(unittest.TestCase):

    def test_no_settings(self):
        s = settings.extract_settings('Just text, $x$.\n* Heading\n')
        self.assertEqual((), s.packages)
        self.assertEqual('', s.preamble)
        self.assertIsNone(s.document_class)
        self.assertEqual((), s.class_options)


    def test_packages_and_preamble(self):
        s = settings.extract_settings(dedent(r'''
            #+TITLE: Notes
            #+LATEX_HEADER: \usepackage{physics}
            #+latex_header: \usepackage[version=4]{mhchem, siunitx}
            #+LATEX_HEADER: \newcommand{\R}{\mathbb{R}}
            #+LATEX_HEADER: \usepackage{amsmath,physics,braket}
            Some text.
        '''))

        assert_that(s.packages, contains_exactly('physics', 'mhchem', 'siunitx', 'braket'))
        self.assertEqual(
            '\\usepackage{physics}\n'
            '\\usepackage[version=4]{mhchem, siunitx}\n'
            '\\newcommand{\\R}{\\mathbb{R}}\n'
            '\\usepackage{amsmath,physics,braket}',
            s.preamble)


    def test_stops_at_first_heading(self):
        s = settings.extract_settings(dedent(r'''
            #+LATEX_HEADER: \usepackage{tikz}
            ** Heading
            #+LATEX_HEADER: \usepackage{physics}
        '''))
        assert_that(s.packages, contains_exactly('tikz'))
        self.assertNotIn('physics', s.preamble)


    def test_base_packages_excluded(self):
        s = settings.extract_settings('#+LATEX_HEADER: \\usepackage{amssymb,xcolor}\n')
        self.assertEqual((), s.packages)
        self.assertEqual('\\usepackage{amssymb,xcolor}', s.preamble)


    def test_malformed_declarations_skipped(self):
        s = settings.extract_settings(dedent(r'''
            #+LATEX_HEADER: \usepackage{unclosed
            #+LATEX_HEADER: \usepackage[opts
            #+LATEX_HEADER:
            #+LATEX_HEADER: \usepackage{}
        '''))
        self.assertEqual((), s.packages)
        self.assertEqual('\\usepackage{unclosed\n\\usepackage[opts\n\\usepackage{}', s.preamble)


    def test_class_and_options(self):
        s = settings.extract_settings(dedent(r'''
            #+LATEX_CLASS: article
            #+LATEX_CLASS_OPTIONS: [11pt, a4paper]
        '''))
        self.assertEqual('article', s.document_class)
        self.assertEqual(('11pt', 'a4paper'), s.class_options)


    def test_deterministic(self):
        text = '#+LATEX_HEADER: \\usepackage{physics}\n$x$\n'
        self.assertEqual(settings.extract_settings(text), settings.extract_settings(text))


    def test_packages_with_options(self):
        self.assertEqual(
            {'mhchem', 'siunitx'},
            settings.packages_with_options(
                '\\usepackage[version=4]{mhchem,siunitx}\n\\usepackage{physics}'))
