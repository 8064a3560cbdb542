from setuptools import find_packages, setup

setup(
    name="marketchat",
    version="1.0.0",
    description="Marketplace chat client with a read-then-archive local message store.",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "tests.*", "scripts")),
    python_requires=">=3.9",
    install_requires=["curl_cffi>=0.6", "websockets>=12.0"],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "marketchat = marketchat.cli:main",
        ],
    },
)
