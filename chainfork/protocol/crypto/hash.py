import hashlib
import xxhash


def twox_hash(data: bytes, bits: int = 128) -> bytes:
    """Returns the Substrate TwoX hash: little-endian xxHash64 digests with seeds 0, 1, ..."""
    if bits % 64 != 0 or bits <= 0:
        raise ValueError(f"TwoX hash size must be a multiple of 64 bits, got {bits}")
    return b"".join(
        xxhash.xxh64_intdigest(data, seed=seed).to_bytes(8, "little")
        for seed in range(bits // 64)
    )

def twox128(data: bytes) -> bytes:
    """Returns the 16 byte TwoX128 hash used for pallet and item prefixes."""
    return twox_hash(data, 128)

def pallet_prefix(name: str) -> str:
    """Returns the storage key prefix of a pallet as 0x-prefixed hex."""
    return "0x" + twox128(name.encode("utf-8")).hex()

def storage_item_prefix(pallet: str, item: str) -> str:
    """Returns the storage key prefix of a pallet storage item (twox128(pallet) ++ twox128(item))."""
    return pallet_prefix(pallet) + twox128(item.encode("utf-8")).hex()

def sha256_file(path, chunk_size: int = 1 << 20) -> str:
    """Returns the SHA256 hex digest of a file, read in chunks."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()
