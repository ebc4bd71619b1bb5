"""Setup configuration for statusctl."""

from setuptools import setup, find_namespace_packages

setup(
    name="statusctl",
    version="1.0.0",
    description="Scheduled, lock-guarded batch updates of aged order statuses",
    author="Your Name",
    packages=find_namespace_packages(include=["statusctl", "statusctl.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "statusctl=statusctl.cli:cli",
        ],
    },
    python_requires=">=3.8",
)
