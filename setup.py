"""Setup script for the Taskforge package."""

from setuptools import setup, find_namespace_packages

setup(
    name="taskforge",
    version="0.1.0",
    packages=find_namespace_packages(include=["taskforge", "taskforge.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "httpx>=0.27",
        "prometheus-client>=0.20",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "structlog>=24.1",
        "tenacity>=8.2",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "pytest-httpx>=0.30",
        ],
    },
    description="Taskforge - multi-agent task orchestration engine",
    author="Taskforge Team",
)
