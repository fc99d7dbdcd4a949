"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="pair-chat",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.100",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "structlog",
        "prometheus-client",
        "opentelemetry-instrumentation-fastapi",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
