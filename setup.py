from importlib import import_module
from setuptools import setup

with open('README.rst') as f:
    readme = f.read()

setup(
    name='stackforth',
    version=import_module('stackforth').__version__,
    description='Small Forth interpreter with a bounded 16-bit stack',
    long_description=readme,
    long_description_content_type='text/x-rst',
    packages=['stackforth'],
    include_package_data=True,
    install_requires=[
        'prompt_toolkit',
        'pygments',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Forth',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development',
        'Topic :: Software Development :: Interpreters',
    ],
    python_requires='>=3.6',
    entry_points={
        'console_scripts': [
            'stackforth = stackforth.forth:cli_main',
            'stackforth-repl = stackforth.repl:cli_main',
        ],
    },
)
