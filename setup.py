"""Setup configuration for ModGuard Discord Bot."""

from setuptools import setup, find_packages

setup(
    name="modguard",
    version="0.0.1",
    description="A Discord bot engine for anti-nuke detection, automod enforcement and appeals",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.12",
    install_requires=[
        "py-cord",
        "aiohttp",
        "aiosqlite",
        "PyYAML",
        "python-dotenv",
        "prompt_toolkit",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "modguard=modguard.main:main",
        ],
    },
)
