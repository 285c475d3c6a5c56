"""
setup.py for the recede Python package.

The package lives under python/; install from the repository root:
    pip install -e .

Development tools (tests, formatting, type checking):
    pip install -e ".[dev]"
"""

from setuptools import find_packages, setup

setup(
    name="recede",
    version="0.1.0",
    description="Receding-horizon LQR/iLQR control with background re-solving",
    package_dir={"": "python"},
    packages=find_packages("python", include=["recede", "recede.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.7",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "hypothesis>=6.0",
            "black>=23.0",
            "ruff>=0.1.0",
            "mypy>=1.0",
        ],
    },
)
