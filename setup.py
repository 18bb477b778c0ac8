"""
MediaPress: setuptools build script.

Usage:
    # Development install:
    pip install -e .[test]

    # Run:
    mediapress --help
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "mediapress"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Media-to-article pipeline: audio preparation, transcription, summary, article",
    packages=find_namespace_packages(include=["mediapress", "mediapress.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "urllib3>=1.26",
        "typer>=0.9.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "mediapress=main:main",
        ],
    },
)
