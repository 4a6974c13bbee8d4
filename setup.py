"""Setup script for tablepipe."""

from setuptools import find_packages, setup

setup(
    name="tablepipe",
    version="0.1.0",
    description="Streaming table export pipeline with schema-aware relational writers",
    author="tablepipe Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "duckdb>=1.2.0",  # DuckDB source and target
        "pandas>=2.0.0",  # CSV reading and timestamp parsing
        "pyarrow>=10.0.0",  # Parquet and DuckDB bulk import
        "sqlalchemy>=2.0.0",  # PostgreSQL and SQLite connections
        "typer>=0.9.0,<0.10.0",  # CLI framework
        "click<8.2",  # typer 0.9 mis-parses boolean flags on click>=8.2
        "rich>=13.0.0",  # CLI output
        "psycopg2-binary>=2.9.0",  # PostgreSQL driver (COPY)
        "pyyaml>=6.0",  # Profile handling
    ],
    package_data={
        "tablepipe": ["py.typed"],
    },
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "black>=22.1.0",
            "isort>=5.10.1",
            "flake8>=4.0.1",
            "mypy>=1.0.0",  # Type checking
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tablepipe=tablepipe.cli.main:app",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
