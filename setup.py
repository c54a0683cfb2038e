#!/usr/bin/env python3
"""
Setup script for Screen Solver

Install with:
    pip install -e .            # application
    pip install -e .[test]      # plus the test tools

Then copy config.example.json to config.json and export GITHUB_TOKEN
(or put it in a .env file next to the module).
"""

from pathlib import Path

from setuptools import setup

HERE = Path(__file__).parent

setup(
    name="screen-solver",
    version="1.0.0",
    description="Hotkey overlay that screenshots a question and shows a model's answer",
    long_description=(HERE / "screen_solver.py").read_text(encoding="utf-8").split('"""')[1].strip(),
    long_description_content_type="text/plain",
    python_requires=">=3.8",
    py_modules=["screen_solver"],
    install_requires=[
        "PyQt5>=5.15",
        "Pillow>=9.2",
        "keyboard>=0.13",
        "openai>=1.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-qt>=4.2",
            "pytest-cov>=4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "screen-solver=screen_solver:main",
        ],
    },
    classifiers=[
        "Environment :: X11 Applications :: Qt",
        "Environment :: Win32 (MS Windows)",
        "Programming Language :: Python :: 3",
    ],
)
