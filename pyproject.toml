[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "datacollector"
version = "0.1.0"
description = "Polls Avtech temperature sensors over HTTP and stores their readings in PostgreSQL"
requires-python = ">=3.10"
keywords = ["monitoring", "sensors", "temperature", "polling", "postgresql", "avtech"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
datacollector = "datacollector.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["datacollector"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
