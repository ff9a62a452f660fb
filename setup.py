# File: setup.py
"""Setup script for the polecart PPO package.
This script defines the package metadata, dependencies,
and optional extras for the cart / pendulum-chain PPO trainer.
It uses setuptools for packaging and distribution.
"""

import os
from setuptools import setup, find_packages

readme_path = os.path.join(os.path.dirname(__file__), "README.md")
try:
    with open(readme_path, encoding="utf-8") as f:
        long_description = f.read()
except FileNotFoundError:
    long_description = "Online PPO training for a cart carrying a chain of inverted pendulums."

setup(
    name="polecart-ppo",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "torch>=2.1.0",
        "numpy>=1.24.3",
        "pydantic>=2.5.0",
        "PyYAML>=6.0.1",
        "tensorboard>=2.15.0",
        "psutil>=5.9.0",  # Process memory monitoring for long sessions
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.3",
            "pytest-cov>=4.1.0",
            "mypy>=1.7.0",
            "black>=23.11.0",
            "flake8>=6.1.0",
            "isort>=5.12.0",
        ],
        "full": [
            "wandb>=0.16.0",
        ],
    },
    author="Your Name",
    description="Online PPO training for a cart carrying a chain of inverted pendulums",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
