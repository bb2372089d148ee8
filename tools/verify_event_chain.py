"""Verify the hash-chain integrity of the declaration event trail exported from /audit/events."""
import json, sys, hashlib

def sha256_hex(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def chain(prev, payload_hash):
    data = (prev or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)

def canonical(obj) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

def main(path):
    export = json.load(open(path, "r", encoding="utf-8"))
    log = export["entries"] if isinstance(export, dict) else export
    prev = None
    for entry in log:
        if entry.get("prev_entry_hash") != prev:
            print("FAIL: broken link at seq", entry["seq"])
            sys.exit(1)
        if sha256_hex(canonical(json.loads(entry["event_json"]))) != entry["payload_hash"]:
            print("FAIL: payload hash mismatch at seq", entry["seq"])
            sys.exit(1)
        expected = chain(prev, entry["payload_hash"])
        if entry["entry_hash"] != expected:
            print("FAIL: chain mismatch at seq", entry["seq"])
            sys.exit(1)
        prev = entry["entry_hash"]
    print(f"PASS: event chain valid ({len(log)} entries)")

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python tools/verify_event_chain.py <audit_events_export.json>")
        raise SystemExit(2)
    main(sys.argv[1])
