"""
AMLChain Payload Codec

Builds the canonical payload a wallet signs and the verifying contract
re-derives. Exactly one encoding is active per deployment and the two are
not interchangeable: a signature produced for one never verifies against a
contract expecting the other.

TypedDataCodec
    EIP-712 structured data. Targets a verifier that checks
    ``eth_signTypedData_v4`` signatures over the ``Declaration`` struct.
    The declaration text is a signed field, so the signer is bound to the
    exact wording. Bump the domain version whenever DECLARATION_FIELDS
    changes; a version string is never reused for a different field set.

PackedCodec
    ``keccak256(abi.encodePacked("Transfer", to, amount, nonce))`` signed
    with the personal-message prefix. Targets the AMLChain
    ``transferTokens(address,address,uint256,uint256,bytes)`` contract. The
    declaration text is not part of the signed bytes; it is tracked through
    ``declaration_text_hash`` only, and the nonce must be numeric.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .hashing import (
    encode_packed_address,
    encode_word_address,
    from_hex,
    keccak256,
    personal_message_hash,
    to_hex,
    uint256_bytes,
)

# ============================================================
# Declaration text
# ============================================================

DECLARATION_TEXTS: Dict[str, str] = {
    "1": (
        "I hereby declare that:\n"
        "1. The funds I am depositing are from legitimate sources\n"
        "2. I am not involved in any money laundering activities\n"
        "3. I comply with all applicable anti-money laundering regulations\n"
        "4. The information provided is accurate and complete\n"
        "5. I understand this declaration may be verified on-chain"
    ),
}

CURRENT_TEXT_VERSION = "1"


def get_declaration_text(version: Optional[str] = None) -> str:
    """Return the declaration wording for a version (current if omitted)."""
    version = version or CURRENT_TEXT_VERSION
    try:
        return DECLARATION_TEXTS[version]
    except KeyError:
        raise KeyError(f"Unknown declaration text version: {version}")


def declaration_text_hash(text: str) -> str:
    return to_hex(keccak256(text))


# ============================================================
# Commitment
# ============================================================

def payload_commitment(owner: str, amount: str, deadline: int, destination: Optional[str] = None) -> str:
    """
    Audit commitment over the declaration terms.

    keccak256(abi.encodePacked(owner, amount, deadline[, destination])).
    Always recomputed server-side from the submitted fields.
    """
    packed = encode_packed_address(owner.lower()) + uint256_bytes(amount) + uint256_bytes(deadline)
    if destination is not None:
        packed += encode_packed_address(destination.lower())
    return to_hex(keccak256(packed))


# ============================================================
# Canonical payload
# ============================================================

@dataclass
class CanonicalPayload:
    """
    A payload ready for an external signer.

    ``data`` is JSON-ready (what the wallet receives); ``digest`` is the
    deterministic hash over it as returned by ``hash_payload``.
    """
    encoding: str
    data: Dict[str, Any]
    digest: bytes

    @property
    def signing_digest(self) -> bytes:
        """The 32 bytes the wallet's ECDSA signature actually covers."""
        if self.encoding == PackedCodec.encoding:
            return personal_message_hash(self.digest)
        return self.digest

    def to_dict(self) -> Dict[str, Any]:
        return {
            "encoding": self.encoding,
            "data": self.data,
            "digest": to_hex(self.digest),
            "signing_digest": to_hex(self.signing_digest),
        }


class PayloadCodec(ABC):
    """Interface shared by the two payload encodings."""

    encoding = "abstract"
    target = ""
    requires_numeric_nonce = False

    @abstractmethod
    def build_message(
        self,
        owner: str,
        destination: str,
        amount: str,
        nonce: str,
        deadline: int,
        declaration_text: str,
    ) -> CanonicalPayload:
        pass

    @abstractmethod
    def hash_payload(self, payload: CanonicalPayload) -> bytes:
        """Recompute the digest from the payload's own contents."""
        pass


# ============================================================
# EIP-712 typed data
# ============================================================

DECLARATION_PRIMARY_TYPE = "Declaration"

DECLARATION_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("owner", "address"),
    ("to", "address"),
    ("value", "uint256"),
    ("message", "string"),
    ("nonce", "string"),
    ("deadline", "uint256"),
)

_UINT_TYPE = re.compile(r"^uint([0-9]{1,3})$")
_BYTES_N_TYPE = re.compile(r"^bytes([1-9]|[12][0-9]|3[0-2])$")
_DECIMAL = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class TypedDataDomain:
    name: str
    version: str
    chain_id: int
    verifying_contract: Optional[str] = None

    def fields(self) -> List[Dict[str, str]]:
        out = [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
        ]
        if self.verifying_contract:
            out.append({"name": "verifyingContract", "type": "address"})
        return out

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
        }
        if self.verifying_contract:
            out["verifyingContract"] = self.verifying_contract.lower()
        return out


def encode_type(primary_type: str, fields: Sequence[Dict[str, str]]) -> str:
    """encodeType for a struct whose members are all atomic/dynamic types."""
    members = ",".join(f"{f['type']} {f['name']}" for f in fields)
    return f"{primary_type}({members})"


def type_hash(primary_type: str, fields: Sequence[Dict[str, str]]) -> bytes:
    return keccak256(encode_type(primary_type, fields))


def encode_value(type_name: str, value: Any) -> bytes:
    """
    encodeData for a single member.

    Dynamic values (string, bytes) are replaced by their keccak256; static
    values are padded to one 32-byte word. Nested structs and arrays are not
    part of any declaration schema and are rejected.
    """
    if type_name == "address":
        return encode_word_address(value)
    if type_name == "bool":
        return uint256_bytes(1 if value else 0)
    if type_name == "string":
        return keccak256(value)
    if type_name == "bytes":
        return keccak256(from_hex(value) if isinstance(value, str) else value)
    m = _UINT_TYPE.match(type_name)
    if m and int(m.group(1)) % 8 == 0 and 8 <= int(m.group(1)) <= 256:
        bits = int(m.group(1))
        n = int(value)
        if n < 0 or n >= 2 ** bits:
            raise ValueError(f"value out of {type_name} range")
        return uint256_bytes(n)
    m = _BYTES_N_TYPE.match(type_name)
    if m:
        raw = from_hex(value) if isinstance(value, str) else bytes(value)
        if len(raw) != int(m.group(1)):
            raise ValueError(f"{type_name} requires {m.group(1)} bytes")
        return raw.ljust(32, b"\x00")
    raise ValueError(f"Unsupported EIP-712 member type: {type_name}")


def hash_struct(primary_type: str, fields: Sequence[Dict[str, str]], message: Dict[str, Any]) -> bytes:
    encoded = b"".join(encode_value(f["type"], message[f["name"]]) for f in fields)
    return keccak256(type_hash(primary_type, fields) + encoded)


def hash_typed_data(typed_data: Dict[str, Any]) -> bytes:
    """
    EIP-712 digest: keccak256("\\x19\\x01" || domainSeparator || hashStruct(message)).
    """
    types = typed_data["types"]
    primary = typed_data["primaryType"]
    domain_separator = hash_struct("EIP712Domain", types["EIP712Domain"], typed_data["domain"])
    struct_hash = hash_struct(primary, types[primary], typed_data["message"])
    return keccak256(b"\x19\x01" + domain_separator + struct_hash)


class TypedDataCodec(PayloadCodec):
    encoding = "typed"

    def __init__(self, domain: TypedDataDomain):
        self.domain = domain
        self.target = (
            f"EIP-712 {DECLARATION_PRIMARY_TYPE} verifier "
            f"({domain.name} v{domain.version}, chain {domain.chain_id})"
        )

    def types(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            "EIP712Domain": self.domain.fields(),
            DECLARATION_PRIMARY_TYPE: [{"name": n, "type": t} for n, t in DECLARATION_FIELDS],
        }

    def build_message(self, owner, destination, amount, nonce, deadline, declaration_text):
        typed_data = {
            "types": self.types(),
            "primaryType": DECLARATION_PRIMARY_TYPE,
            "domain": self.domain.to_dict(),
            "message": {
                "owner": owner.lower(),
                "to": destination.lower(),
                "value": str(amount),
                "message": declaration_text,
                "nonce": str(nonce),
                "deadline": int(deadline),
            },
        }
        payload = CanonicalPayload(encoding=self.encoding, data=typed_data, digest=b"")
        payload.digest = self.hash_payload(payload)
        return payload

    def hash_payload(self, payload: CanonicalPayload) -> bytes:
        return hash_typed_data(payload.data)


# ============================================================
# Packed hash
# ============================================================

PACKED_TAG = "Transfer"
PACKED_TYPES = ("string", "address", "uint256", "uint256")


def encode_packed(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """abi.encodePacked for the member types a packed declaration uses."""
    out = b""
    for type_name, value in zip(types, values):
        if type_name == "string":
            out += value.encode("utf-8")
        elif type_name == "address":
            out += encode_packed_address(value)
        elif type_name == "uint256":
            out += uint256_bytes(value)
        else:
            raise ValueError(f"Unsupported packed type: {type_name}")
    return out


class PackedCodec(PayloadCodec):
    encoding = "packed"
    target = "AMLChain transferTokens(address,address,uint256,uint256,bytes) personal_sign verifier"
    requires_numeric_nonce = True

    def __init__(self, tag: str = PACKED_TAG):
        self.tag = tag

    def build_message(self, owner, destination, amount, nonce, deadline, declaration_text):
        if not _DECIMAL.match(str(nonce)):
            raise ValueError("packed encoding requires a numeric nonce")
        data = {
            "types": list(PACKED_TYPES),
            "values": [self.tag, destination.lower(), str(amount), str(nonce)],
            # carried for display and audit only; not part of the signed bytes
            "declarationTextHash": declaration_text_hash(declaration_text),
        }
        payload = CanonicalPayload(encoding=self.encoding, data=data, digest=b"")
        payload.digest = self.hash_payload(payload)
        return payload

    def hash_payload(self, payload: CanonicalPayload) -> bytes:
        return keccak256(encode_packed(payload.data["types"], payload.data["values"]))


def get_codec(encoding: str, domain: Optional[TypedDataDomain] = None) -> PayloadCodec:
    if encoding == TypedDataCodec.encoding:
        if domain is None:
            raise ValueError("typed encoding requires an EIP-712 domain")
        return TypedDataCodec(domain)
    if encoding == PackedCodec.encoding:
        return PackedCodec()
    raise ValueError(f"Unknown payload encoding: {encoding}")


def transfer_call_args(declaration: Any) -> List[Any]:
    """
    Ordered arguments for ``transferTokens(signer, to, amount, nonce, signature)``.

    Amount and a numeric nonce are passed as ints so a contract client
    encodes them as uint256 without going through floats.
    """
    nonce = declaration.nonce
    return [
        declaration.owner,
        declaration.destination,
        int(declaration.amount),
        int(nonce) if _DECIMAL.match(nonce) else nonce,
        declaration.signature,
    ]
