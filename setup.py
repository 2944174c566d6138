"""
VidFriends media ingestion: setuptools build script.

Usage:
    # Development (editable install):
    pip install -e ".[test]"

    # Run the tests:
    python -m pytest tests
"""

from setuptools import setup

APP_NAME = "vidfriends-ingest"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Asynchronous video metadata caching and media ingestion for VidFriends",
    packages=[
        "vidfriends",
        "vidfriends.core",
    ],
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
            "vidfriends=main:main",
        ],
    },
)
