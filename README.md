# pcroracle

Building blocks for tools that predict the TPM PCR values a Linux system
will produce on its next boot: reading boot entries and EFI state, recording
and replaying that state, handling RSA policy keys, and storing sealed
objects in the TPM 2.0 key file format.

## Modules

- `pcroracle.util`: PCR masks (`parse_pcr_index`, `parse_pcr_mask`,
  `print_pcr_mask`), hex and base64 formatting (`parse_octet_string`,
  `print_octet_string`, `print_hex_string`, `print_base64_value`),
  `hexdump`, UTF-16LE conversion, `version_string_compare`, timing helpers
  and small path helpers (`path_unix2dos`, `path_dos2unix`,
  `path_has_file_extension`, `read_single_line_file`).
- `pcroracle.shim`: the shim MOK variables and their runtime names
  (`shim_variable_name_valid`, `shim_variable_get_rtname`,
  `shim_variable_get_full_rtname`).
- `pcroracle.uapi`: boot loader entry files (`BootEntry`, `EntryTokens`,
  `load_boot_entry`, `find_matching_boot_entry`, `get_boot_entry`,
  `find_boot_entry`) and the version ordering `vercmp`.
- `pcroracle.sd_boot`: the installed system's entry tokens and boot entry
  lookup (`SystemIdentity`, `read_os_release`, `is_boot_entry`), and adding
  a signed policy to a systemd PCR signature JSON file
  (`policy_file_add_entry`).
- `pcroracle.testcase`: a directory that records EFI variables, EFI
  applications, sysfs files, partition links, disk sectors and file digests,
  and plays them back (`Testcase`, `BlockDevRecording`, `EvDigest`,
  `canon_path`).
- `pcroracle.runtime`: access to EFI variables, the TPM event log, IMA
  measurements, block devices and file digests, optionally recording to or
  replaying from a `Testcase` (`Runtime`, `BlockDevice`, `read_file`,
  `write_file`).
- `pcroracle.secure_boot`: `secure_boot_enabled(runtime)`.
- `pcroracle.rsa`: RSA keys in PEM files, PKCS#1 v1.5 SHA-256 signing and
  conversion to the TPM public key structure (`RsaKey`, `TpmRsaPublic`,
  `read_public_key`, `read_private_key`, `generate_key`, `RsaKeyError`).
- `pcroracle.store`: key files named as `pem:` or `native:` paths or by a
  `.pem` extension (`StoredKey`, `KeyFormat`, `new_public_key`,
  `new_private_key`, `StoredKeyError`).
- `pcroracle.tpm2key`: the DER "TSS2 PRIVATE KEY" format for sealed objects
  with PolicyPCR and PolicyAuthorize policies (`TpmKey`, `PcrSelection`,
  `PolicyCommand`, `AuthPolicy`, `make_basekey`, `parse_der`,
  `read_key_file`, `write_key_file`, `Tpm2KeyError`).

Errors are raised as exceptions: `ValueError` for malformed input, `OSError`
for file access, and the module errors named above.

## Examples

```python
from pcroracle.util import parse_pcr_mask, print_pcr_mask

mask = parse_pcr_mask("0-4,7")
print(print_pcr_mask(mask))        # 0-4,7
```

```python
from pcroracle.uapi import vercmp

vercmp("6.4.1", "6.4")             # > 0: the first version is newer
```

```python
from pcroracle.rsa import generate_key

key = generate_key(2048)
key.write_private("policy-key.pem")
key.write_public("policy-key.pub.pem")
signature = key.sign(b"data to be signed")
```

```python
from pcroracle.testcase import Testcase
from pcroracle.runtime import Runtime
from pcroracle.secure_boot import secure_boot_enabled

runtime = Runtime()
runtime.replay_testcase(Testcase("recorded-run"))
print(secure_boot_enabled(runtime))
```

## What it does not do

- There is no command-line program; the package is a library only.
- It does not talk to a TPM: it cannot read PCRs, seal or unseal secrets,
  or run self tests. `TpmKey` only stores objects that were sealed
  elsewhere.
- It does not parse the TPM event log or predict PCR values itself;
  `Runtime.open_eventlog` only opens the log file.
- Native key files hold RSA public keys only, and PEM private keys with a
  passphrase are not supported.

## Tests

```
pip install -e .[test]
pytest
```