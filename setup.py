from setuptools import setup, find_packages

setup(
    name="sts_qa",
    version="0.1.0",
    description="Track-to-truth matching and track-finding efficiency QA for the STS",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "pandas",
        "orjson",
    ],
    extras_require={
        # Parquet input tables
        "parquet": [
            "pyarrow",
        ],
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            # CLI entry point for running main.py
            "sts-qa=sts_qa.main:main",
        ],
    },
)
