"""Setup file for deadman-switch package."""
from __future__ import annotations

from setuptools import find_packages, setup

setup(
    name="deadman-switch",
    version="1.0.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "pydantic>=2.5.3",
        "pydantic-settings>=2.1.0",
        "email-validator>=2.1.0",
        "sqlalchemy[asyncio]>=2.0.25",
        "asyncpg>=0.29.0",
        "alembic>=1.13.1",
        "httpx>=0.26.0",
        "structlog>=24.1.0",
        "apscheduler>=3.10,<4",
        "python-multipart>=0.0.6",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "aiosqlite>=0.19",
        ],
    },
)
