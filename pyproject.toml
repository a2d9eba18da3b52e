[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "storageop"
version = "0.0.1"
description = "Reconciliation logic for cluster storage: default StorageClass handling, vSphere problem detector configuration, alert rules and deployment status"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "storage",
    "operator",
    "storageclass",
    "prometheus",
    "vsphere",
    "reconciliation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["storageop"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
