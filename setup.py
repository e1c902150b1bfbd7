"""
tubescribe: setuptools build script.

Usage:
    # Development install:
    pip install -e .[test]

    # Run the worker pool:
    tubescribe worker
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "tubescribe"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Durable video transcription queue with native-caption and local speech-model tiers",
    packages=find_namespace_packages(include=["tubescribe", "tubescribe.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "boto3>=1.26.0",
        "faster-whisper>=1.0.0",
        "yt-dlp>=2024.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            f"{APP_NAME}=main:main",
        ],
    },
)
