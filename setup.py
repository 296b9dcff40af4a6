from setuptools import setup, find_packages
import os
from io import open
import re

# Bedrock Converse package

PACKAGE_NAME = "bedrock-converse"
PACKAGE_PPRINT_NAME = "Bedrock Converse"

# a-b => a_b
package_folder_path = PACKAGE_NAME.replace("-", "_")

# Version extraction inspired from 'requests'
with open(os.path.join(package_folder_path, "_version.py"), "r") as fd:
    version = re.search(r'^VERSION\s*=\s*[\'"]([^\'"]*)[\'"]', fd.read(), re.MULTILINE).group(1)
if not version:
    raise RuntimeError("Cannot find version information")

with open("README.md", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name=PACKAGE_NAME,
    version=version,
    description="{} chat, embedding and generation metadata adapters for Amazon Bedrock".format(PACKAGE_PPRINT_NAME),
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords="aws, bedrock, converse, llm, embeddings",
    author="Microsoft Corporation",
    license="MIT License",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "License :: OSI Approved :: MIT License",
    ],
    packages=find_packages(
        exclude=[
            "tests",
            "tests.*",
        ]
    ),
    include_package_data=True,
    package_data={
        "bedrock_converse": ["py.typed"],
    },
    install_requires=[
        "boto3>=1.35.0,<2.0.0",
        "botocore>=1.35.0,<2.0.0",
        "pydantic>=2.0.0,<3.0.0",
        "python-dotenv>=1.0.0",
        "tenacity>=8.2.0",
        "typing-extensions>=4.6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    python_requires=">=3.10",
)
