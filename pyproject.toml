[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "douyin-social"
version = "0.1.0"
description = "Follow, messaging, user-profile, like-count, password and token services for a short-video platform backend"
requires-python = ">=3.10"
keywords = ["social", "follow", "messaging", "redis", "sqlite", "jwt", "bcrypt"]
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
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]
dependencies = [
    "redis>=4.5",
    "bcrypt>=4.0",
    "pyjwt>=2.6",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["douyin_social"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
