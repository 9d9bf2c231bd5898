"""
Setup script for AgentMem
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="agentmem",
    version="0.1.0",
    author="AgentMem",
    description="Long-term memory for AI agents: decaying, associative, scope-isolated",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["agentmem", "agentmem.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "agentmem=agentmem.server:main",
            "agentmem-cli=agentmem.cli:main",
        ],
    },
)
