from pathlib import Path
from typing import Union

from .errors import DecryptionError

BUNDLE_BASE_KEY = "532b4631e4a7b9473e7cfb"
# The bundle header is stored in clear.
HEADER_SIZE = 256


def create_final_key(bundle_key: int) -> bytes:
    base_key = bytes.fromhex(BUNDLE_BASE_KEY)
    try:
        key_bytes = bundle_key.to_bytes(8, byteorder="little", signed=True)
    except OverflowError as e:
        raise DecryptionError(f"Bundle key {bundle_key} is outside the signed 64-bit range") from e
    final_key = bytearray(len(base_key) * 8)
    for i, b in enumerate(base_key):
        baseOffset = i << 3
        for j, k in enumerate(key_bytes):
            final_key[baseOffset + j] = b ^ k
    return bytes(final_key)


def decrypt_bytes(data: bytes, bundle_key: int) -> bytes:
    final_key = create_final_key(bundle_key)
    if len(data) <= HEADER_SIZE:
        return bytes(data)
    body_len = len(data) - HEADER_SIZE
    # Keystream is indexed by absolute file offset, not body offset.
    start = HEADER_SIZE % len(final_key)
    repeats = (start + body_len) // len(final_key) + 1
    stream = (final_key * repeats)[start:start + body_len]
    body = int.from_bytes(data[HEADER_SIZE:], "big") ^ int.from_bytes(stream, "big")
    return bytes(data[:HEADER_SIZE]) + body.to_bytes(body_len, "big")


# XOR is symmetric
encrypt_bytes = decrypt_bytes


def decrypt_file_to_file(src: Union[str, Path], dst: Union[str, Path], bundle_key: int):
    dst = Path(dst)
    try:
        data = Path(src).read_bytes()
    except OSError as e:
        raise DecryptionError(f"Cannot read {src}: {e}") from e

    plain = decrypt_bytes(data, bundle_key)

    try:
        with open(dst, "wb") as f:
            f.write(plain)
    except OSError as e:
        dst.unlink(missing_ok=True)
        raise DecryptionError(f"Cannot write {dst}: {e}") from e
