[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "openbpl"
version = "0.1.0.dev0"
description = "Brand-protection monitoring: watch certificate transparency logs for look-alike domains and act on threats."
requires-python = ">=3.10"
keywords = [
    "brand-protection",
    "phishing",
    "certificate-transparency",
    "certstream",
    "threat-detection",
    "monitoring",
]
classifiers = [
    "Development Status :: 2 - Pre-Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Information Technology",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: Internet",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyyaml>=6.0",
    "websockets>=12.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
openbpl = "openbpl.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["openbpl"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
