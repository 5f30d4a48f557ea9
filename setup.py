from setuptools import setup

setup(
    name="eessi-monitor",
    version="0.3.0",
    packages=["eessimon", "eessimon.cli", "eessimon.lib"],
    python_requires=">=3.8",
    install_requires=[
        "Click",
        "PyYAML",
        "colorama",
        "requests",
        "psutil",
        "matplotlib",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "eessi-monitor = eessimon.cli.cli:cli",
        ],
    },
)
