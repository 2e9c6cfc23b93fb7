[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "npdstats"
version = "0.1.0"
description = "Node system statistics monitor: CPU, disk, host, memory, network and OS feature metrics."
requires-python = ">=3.10"
keywords = ["monitoring", "metrics", "procfs", "node", "system-stats"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["npdstats"]

[tool.pytest.ini_options]
addopts = "-ra"
