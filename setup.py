"""
Setup script for brok-engine.

brok-engine is the adaptive mastery core of the brok learning platform.
It serves three roles:

1. Mastery Tracking - logit-space updates from graded attempts
2. Mastery Gating - strict multi-criterion "mastered" decisions
3. Scheduling - which skill and which question format come next

The 'brok' command is a thin terminal front end over the engine and its
SQLite/PostgreSQL state store.
"""

from setuptools import find_packages, setup

setup(
    name="brok-engine",
    version="1.0.0",
    description="Adaptive mastery tracking and scheduling engine for skill graphs",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="brok",
    packages=find_packages(include=["brok", "brok.*"]),
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
        "postgres": [
            "psycopg2-binary>=2.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "brok=brok.cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning mastery adaptive scheduling education skill-graph",
)
