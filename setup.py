"""
VidScript — setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .

    # With test tooling:
    pip install -e ".[test]"

Installs the vidscript.core package, main.py and a `vidscript` console command.
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "vidscript"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Video link to text transcript: captions or DashScope speech recognition",
    packages=find_namespace_packages(include=["vidscript", "vidscript.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "vidscript=main:main",
        ],
    },
)
