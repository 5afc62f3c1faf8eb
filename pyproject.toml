[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kcmacho"
version = "0.1.0"
description = "Decode 64-bit Mach-O headers, kernel cache filesets, symbols, function starts and chained fixups"
requires-python = ">=3.10"
dependencies = []
keywords = ["mach-o", "macho", "kernelcache", "fileset", "dyld", "chained-fixups", "reverse-engineering"]
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
    "Topic :: Software Development :: Disassemblers",
    "Topic :: File Formats",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kcmacho"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
