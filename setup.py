from setuptools import setup, find_packages


setup(
    name="bkupman",
    version="0.1",
    packages=find_packages(include=["bkupman", "bkupman.*"]),
    description="Backup inbox ingestion with versioned repository and fragmenting encryption at rest.",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
        "tomli-w>=1.0.0",
        "tomli>=2.0.0; python_version < '3.11'",
    ],
    entry_points={
        "console_scripts": [
            "bkupman=bkupman.cli:main",
        ]
    },
)
