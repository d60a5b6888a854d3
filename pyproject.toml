[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ctlptl"
version = "0.1.0"
description = "Describe, print and reconcile local Kubernetes clusters, image registries and Docker Desktop settings"
requires-python = ">=3.10"
keywords = ["kubernetes", "docker", "registry", "kind", "minikube", "docker-desktop"]
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
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ctlptl"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
