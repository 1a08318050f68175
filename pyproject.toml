[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cachewarm"
version = "0.1.0"
description = "CDN cache warmer: discovers URLs from sitemaps and requests them through a database-backed task queue"
requires-python = ">=3.10"
keywords = ["cache", "cdn", "crawler", "sitemap", "warmer", "task-queue"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "requests>=2.28",
    "sqlalchemy>=2.0",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
cachewarm-dbcheck = "cachewarm.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["cachewarm"]

[tool.pytest.ini_options]
addopts = "-ra"
