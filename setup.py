"""Setup configuration for contentctl."""

from setuptools import setup, find_packages

setup(
    name="contentctl",
    version="1.0.0",
    description="Paced content-generation job scheduler with retries and batch notifications",
    author="Your Name",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "contentctl=contentctl.cli:cli",
        ],
    },
    python_requires=">=3.8",
)
