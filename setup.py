"""
Setup script for the cbdrank package.
"""

from setuptools import setup, find_packages

setup(
    name="cbdrank",
    version="0.1.0",
    description="Rank, entropy, luminosity and karma over stake-weighted content graphs",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "pandas>=2.0.0",
        "networkx>=3.0",
        "scipy>=1.10",
        "matplotlib>=3.7",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "gpu": [
            "cupy",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "cbdrank=cbdrank.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
