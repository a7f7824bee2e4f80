"""Package setup for taskhub."""

from setuptools import setup, find_packages

setup(
    name="taskhub",
    version="1.0.0",
    description="Teams, projects and tasks with a three-level cascading access resolver",
    packages=find_packages(include=["taskhub_v1", "taskhub_v1.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "pydantic>=2.0.0",
        "typer>=0.9.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0", "httpx>=0.24.0"],
    },
    entry_points={
        "console_scripts": [
            "taskhub=taskhub_v1.cli:app",
        ],
    },
)
