from setuptools import setup, find_packages
import re

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("calllog_query/__init__.py", "r", encoding="utf-8") as f:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", f.read(), re.M)
    if version_match:
        version = version_match.group(1)
    else:
        raise RuntimeError("Unable to find version string in calllog_query/__init__.py")

setup(
    name="calllog-query",
    version=version,
    description="Filter composition and query compilation for voice-agent call logs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["calllog_query", "calllog_query.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy>=2.0.0",
        "rich>=13.0.0",  # CLI tables
        "python-dotenv>=0.19.0",  # .env support for settings
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.10.0",
            "mypy>=1.0.0",
        ],
        "postgres": ["psycopg2-binary>=2.9.0"],
    },
    entry_points={
        "console_scripts": [
            "calllog-query=calllog_query.cli:main",
        ],
    },
)
