[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pcroracle"
version = "0.1.0"
description = "Building blocks for TPM PCR prediction: boot entries, EFI runtime access, testcase recording, RSA keys and TPM 2.0 key files"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["tpm", "pcr", "uefi", "secure-boot", "systemd-boot", "tpm2"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: Security :: Cryptography",
    "Topic :: System :: Boot",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pcroracle"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
