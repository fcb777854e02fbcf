[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "argthread"
version = "0.1.0"
description = "Branch-sequence HMM, coalescent and emission models for threading a lineage onto an ancestral recombination graph"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "ancestral recombination graph",
    "ARG",
    "coalescent",
    "hidden Markov model",
    "population genetics",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["argthread"]

[tool.pytest.ini_options]
addopts = "-ra"
