[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ticketune"
version = "1.0.0"
description = "Discord interactions bot library for password-support tickets, canned helper replies and GitHub bug reports"
requires-python = ">=3.10"
keywords = ["discord", "bot", "support", "tickets", "interactions", "github", "wsgi"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]
dependencies = [
    "requests>=2.28",
    "pynacl>=1.5",
    "pyjwt>=2.6",
    "cryptography>=39",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "responses>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["ticketune"]

[tool.hatch.build.targets.sdist]
include = ["ticketune", "tests", "pyproject.toml", "README.md"]

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
