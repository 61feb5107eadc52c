import os
from setuptools import setup, find_packages

setup(
    name="edgellm-sdk",
    version="0.3.0",
    description="edgellm — download LLM bundles and run them locally, with a simulated fallback",
    long_description=open("README.md").read() if os.path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="EdgeLLM",
    packages=find_packages(include=["edgellm", "edgellm.*"]),
    install_requires=[
        "psutil>=5.9.0",
        "httpx>=0.24.0",
        "huggingface_hub>=0.23.0",
        "click>=8.0.0",
    ],
    extras_require={
        "mlx": [
            "mlx-lm>=0.19.0",
        ],
        "llama": [
            "llama-cpp-python>=0.2.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.21.0",
            "ruff>=0.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "edgellm=edgellm.cli:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
