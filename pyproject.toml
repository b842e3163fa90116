[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "evframe"
version = "0.1.0"
description = "Module manager, configuration helpers and controller web server for a modular charging-station framework"
requires-python = ">=3.10"
keywords = ["modules", "manager", "process supervision", "yaml", "websocket", "mqtt"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]
dependencies = [
    "pyyaml",
    "aiohttp",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
evframe-manager = "evframe.manager:main"

[tool.hatch.build.targets.wheel]
packages = ["evframe"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
