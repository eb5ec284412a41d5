[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "marblectl"
version = "0.3.0"
description = "Library for managing a confidential computing service mesh on Kubernetes and talking to its Coordinator"
requires-python = ">=3.11"
keywords = ["kubernetes", "sgx", "confidential-computing", "service-mesh", "attestation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "requests",
    "pyyaml",
    "cryptography",
    "termcolor",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["marblectl"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
ignore_missing_imports = true
