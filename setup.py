from setuptools import setup, find_packages


setup(
    name="star",
    version="0.1",
    packages=find_packages(include=["star", "star.*"]),
    description="A single-file archive container with in-place append, delete, update and pack.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "star=star.cli:main",
        ]
    },
)
