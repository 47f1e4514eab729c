[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tuss3store"
version = "0.1.0"
description = "S3-backed storage for resumable (tus) uploads using multipart uploads"
requires-python = ">=3.10"
dependencies = []
keywords = ["tus", "s3", "upload", "resumable", "multipart", "storage"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tuss3store"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
