[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appimaged"
version = "0.1.0"
description = "Building blocks for registering AppImages and integrating them with the desktop"
requires-python = ">=3.10"
keywords = ["appimage", "desktop", "integration", "thumbnail", "xdg", "desktop-file"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Desktop Environment",
]
dependencies = [
    "paho-mqtt",
    "psutil",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["appimaged"]

[tool.pytest.ini_options]
addopts = "-ra"
