"""Building blocks for TPM PCR prediction: boot entries, EFI state, testcases, RSA keys and TPM 2.0 key files."""

__version__ = "0.1.0"

__all__ = [
    "util",
    "shim",
    "uapi",
    "sd_boot",
    "testcase",
    "runtime",
    "secure_boot",
    "rsa",
    "store",
    "tpm2key",
]