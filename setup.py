from setuptools import find_packages, setup

setup(
    name="vodguard",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "cryptography",
        "requests",
        "click",
        "pyjwt[crypto]>=2.4",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
            "fakeredis>=2.20",
        ],
    },
    entry_points={
        "console_scripts": [
            "vodguard=vodguard.cli:cli",
        ],
    },
)
