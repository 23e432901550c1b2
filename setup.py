"""Setup configuration for the geodedupe package."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="geodedupe",
    version="0.1.0",
    author="geodedupe Contributors",
    description="Geohash-sharded candidate duplicate detection between geospatial location datasets",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "demos", "demos.*", "docs", "docs.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: GIS",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=8.2.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.12.0",
            "hypothesis>=6.98.0",
        ],
        "api": [
            "openai>=1.0.0",
            "huggingface_hub>=0.20.0",
            "requests>=2.31.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "geodedupe=geodedupe.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "geodedupe": ["py.typed"],
    },
)
