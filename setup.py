"""Setup configuration for prdash"""

from setuptools import setup, find_packages

setup(
    name="prdash-api",
    version="0.1.0",
    description=(
        "JSON API aggregating GitHub pull requests, reviews, commits and "
        "organization activity for engineering dashboards."
    ),
    author="PR Dashboard Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "fastapi>=0.110",
        "pydantic>=2.0",
        "uvicorn>=0.23",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "httpx>=0.24",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "prdash-api=prdash.main:main",
        ],
    },
)
