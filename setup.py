from setuptools import setup, find_packages


setup(
    name="dfs",
    version="0.1",
    packages=find_packages(include=["dfs", "dfs.*"]),
    description="Reader and writer for split DFS game asset archives with CRC16 window checksums.",
    author="vercingetorx",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "dfs=dfs.cli:main",
        ]
    },
)
