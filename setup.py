"""
setup.py for the diffopt Python package.

Sources live under python/diffopt. Install for development with:
    pip install -e ".[dev]"

Then run the test suite:
    pytest tests/python
"""

from setuptools import find_packages, setup

setup(
    name="diffopt",
    version="0.1.0",
    description="Sensitivity analysis of LP, QP and conic optimization problems",
    package_dir={"": "python"},
    packages=find_packages("python"),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.7",
        "scs>=3.2",
        "diffcp>=1.1",
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
