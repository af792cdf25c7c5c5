#!/usr/bin/env python3
"""
Setup script for ReadAloud - assistive read-aloud with word highlighting and voice control
"""
from setuptools import setup, find_packages
import os

# Read the contents of README file
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

# Read version from the package without importing it
def get_version():
    init_path = os.path.join(this_directory, 'src', 'readaloud', '__init__.py')
    try:
        with open(init_path, 'r', encoding='utf-8') as f:
            for line in f:
                if line.startswith('__version__'):
                    return line.split('=', 1)[1].strip().strip('"\'')
    except FileNotFoundError:
        pass
    return "1.0.0"

setup(
    name="readaloud",
    version=get_version(),
    author="ReadAloud Team",
    author_email="info@readaloud.local",
    description="Assistive reader: speech playback with word highlighting, voice commands and voice dialogue",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    package_dir={"": "src"},
    include_package_data=True,
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Adaptive Technologies",
    ],
    keywords="accessibility read-aloud tts speech-recognition voice-commands low-vision",
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21.0",
        "sounddevice>=0.4.0",
        "soundfile>=0.10.0",
        "PyYAML>=6.0",
        "requests>=2.25.0",
        "pyttsx3>=2.90",
        "SpeechRecognition>=3.10.0",
    ],
    extras_require={
        "microphone": [
            "PyAudio>=0.2.13",
        ],
        "dev": [
            "pytest>=7.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
            "pre-commit>=2.17.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "readaloud=readaloud.cli:main",
        ],
    },
)
