"""
webpilot - Setup Configuration

Browser automation agent core: a tool-calling model works a live web page
through a ranked element catalog, modal detection and a layered action executor.

License: Apache-2.0
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Core dependencies
core_deps = [
    "pydantic>=2.11.9",
    "aiohttp>=3.12.15",
    # Browser automation
    "playwright>=1.55.0",
    "pillow>=12.0.0",  # Screenshot dimensions
    # Validation
    "jsonschema>=4.23.0",
    # CLI
    "click>=8.1.7",
]

# Test dependencies
test_deps = [
    "pytest>=8.4.1",
    "pytest-asyncio>=1.0.0",
    "pytest-cov>=6.2.1",
]

# Development dependencies
dev_deps = test_deps + [
    "pytest-mock>=3.14.1",
    # Code quality
    "black>=25.0.0",
    "flake8>=7.1.0",
    "mypy>=1.13.0",
]

setup(
    name="webpilot",
    version="0.1.0",

    # Package description
    description="Browser automation agent core: tool-calling control loop, element catalog with modal detection, and a cross-context message relay",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    # Python version requirement
    python_requires=">=3.11",

    # Dependencies
    install_requires=core_deps,

    # Optional dependencies (extras)
    extras_require={
        "test": test_deps,
        "dev": dev_deps,
    },

    # PyPI classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Internet :: WWW/HTTP :: Browsers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Framework :: AsyncIO",
    ],

    keywords=[
        "ai", "agents", "llm", "browser", "automation", "playwright",
        "tool-calling", "openai", "anthropic", "web",
    ],

    license="Apache-2.0",

    include_package_data=True,
    zip_safe=False,

    entry_points={
        "console_scripts": [
            "webpilot=webpilot.cli:main",
        ],
    },
)
