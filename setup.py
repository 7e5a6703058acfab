import os
from setuptools import setup

def read(fname):
    return open(os.path.join(os.path.dirname(__file__), fname)).read()

setup(
    name = 'mathpeek',
    version = '0.1',
    description = 'Renders LaTeX math fragments found in plain-text documents to cached SVG/PNG images, for editor hover previews.',
    long_description = read('README.md'),
    license = 'MIT',
    keywords = 'latex math preview org-mode',
    install_requires=[
        'markdown', 'platformdirs'
    ],
    extras_require = {
        'test': ['pytest', 'PyHamcrest', 'lxml']
    },
    packages = [
        'mathpeek', 'mathpeek.lib'
    ],
    entry_points = {
        'console_scripts': ['mathpeek=mathpeek.lib.cli:main'],
    },
    classifiers = [
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: Education',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Topic :: Text Editors :: Text Processing',
        'Topic :: Text Processing :: Markup :: LaTeX',
    ]
)
