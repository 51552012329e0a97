[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "userdemo"
version = "0.1.0"
description = "A small HTTP service that stores and lists users in PostgreSQL"
requires-python = ">=3.10"
keywords = ["http", "rest", "flask", "sqlalchemy", "postgresql", "users", "cors"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Database :: Front-Ends",
]
dependencies = [
    "sqlalchemy>=2.0",
    "flask>=2.3",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
userdemo-server = "userdemo.main:main"

[tool.hatch.build.targets.wheel]
packages = ["userdemo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
