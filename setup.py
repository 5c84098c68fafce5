"""Setup script for the facet orchestration package."""

from setuptools import setup, find_packages

setup(
    name="facet-orchestrator",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.11",
    install_requires=[
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
        ],
    },
    description="Facet - risk-aware orchestration and execution planning for multi-agent support conversations",
    author="Facet Team",
)
