"""
AMLChain Hashing

Keccak-256 and the Solidity ABI word encodings the verifying contract uses.
All digests are returned as raw bytes; ``to_hex`` renders them with a 0x
prefix and lowercase hexadecimal.
"""

from typing import Union

from Crypto.Hash import keccak

WORD_SIZE = 32
UINT256_MAX = 2 ** 256 - 1


def keccak256(data: Union[bytes, str]) -> bytes:
    """Compute Keccak-256 (the pre-standard SHA-3 used by Ethereum)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def address_bytes(address: str) -> bytes:
    """Decode a 0x-prefixed 20-byte address."""
    raw = from_hex(address)
    if len(raw) != 20:
        raise ValueError(f"address must be 20 bytes, got {len(raw)}")
    return raw


def uint256_bytes(value: Union[int, str]) -> bytes:
    """Big-endian 32-byte encoding of an unsigned integer."""
    n = int(value)
    if n < 0 or n > UINT256_MAX:
        raise ValueError("value out of uint256 range")
    return n.to_bytes(WORD_SIZE, "big")


def encode_word_address(address: str) -> bytes:
    """abi.encode(address): left-padded to a full word."""
    return address_bytes(address).rjust(WORD_SIZE, b"\x00")


def encode_packed_address(address: str) -> bytes:
    """abi.encodePacked(address): the raw 20 bytes."""
    return address_bytes(address)


def personal_message_hash(message_hash: bytes) -> bytes:
    """
    Digest a wallet actually signs for ``personal_sign`` over a 32-byte hash.

    Matches ecrecover against keccak256("\\x19Ethereum Signed Message:\\n32" || hash).
    """
    prefix = b"\x19Ethereum Signed Message:\n" + str(len(message_hash)).encode("ascii")
    return keccak256(prefix + message_hash)
