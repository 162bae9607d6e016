[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "forohtoo"
version = "0.1.0"
description = "Solana wallet polling: fetch, parse and record wallet transactions, with USDC token-account coverage."
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["solana", "wallet", "transactions", "polling", "usdc", "spl-token", "memo", "base58"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["forohtoo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
