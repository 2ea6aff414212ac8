[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "remora"
version = "0.1.0"
description = "Building blocks for a web crawler: page fetching, link extraction, robots.txt, sitemaps, HTTP caching, URL sets and a persistent queue"
requires-python = ">=3.10"
keywords = ["crawler", "spider", "web", "robots.txt", "sitemap", "queue", "lmdb"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "requests>=2.28",
    "beautifulsoup4>=4.11",
    "lmdb>=1.4",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["remora"]

[tool.hatch.build.targets.sdist]
include = ["remora", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
