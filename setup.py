"""
botsbrain - Tiered Storage for Support Bots
Memory, Redis and database storage behind one key/value engine,
plus the domain store of a Telegram support bot

Setup script for package installation

Version History:
- 1.0.0: Three-tier engine, domain store, storage CLI
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="botsbrain",
    version="1.0.0",
    description="botsbrain - Tiered memory/Redis/database storage for support bots",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Communications :: Chat",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "black>=23.0.0",
            "isort>=5.12.0",
        ],
        "postgresql": [
            "asyncpg>=0.29.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "botsbrain-storage=botsbrain.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "botsbrain": [
            "config/*.yaml",
            "scripts/*.sql",
        ],
    },
)
