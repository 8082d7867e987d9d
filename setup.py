"""
setup.py for the hydrosddp package.

Installs the pure-Python optimization engine for hydropower cascades:
deterministic full-horizon LP and stochastic dual dynamic programming
(SDDP) with a HiGHS-backed LP layer.

    pip install -e .
    pip install -e ".[dev]"   # test tooling
"""

from setuptools import find_packages, setup

setup(
    name="hydrosddp",
    version="0.1.0",
    description="Deterministic and SDDP scheduling of hydropower reservoir cascades",
    package_dir={"": "python"},
    packages=find_packages(where="python"),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.9",
        "pandas>=1.3",
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
