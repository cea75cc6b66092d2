"""
VMess Link Value Object

Architectural Intent:
- Builds the shareable vmess:// URI clients import to reach a proxy endpoint
- Pure function of address, user id, port and remark; never persisted

Format:
    vmess:// + base64(JSON share object, v2 schema)
"""

import base64
import json


def build_vmess_link(address: str, user_id: str, port: int, remark: str = "") -> str:
    if not address:
        raise ValueError("address cannot be empty")
    if not user_id:
        raise ValueError("user_id cannot be empty")

    share = {
        "v": "2",
        "ps": remark,
        "add": address,
        "port": str(port),
        "id": user_id,
        "aid": "0",
        "scy": "auto",
        "net": "tcp",
        "type": "none",
        "host": "",
        "path": "",
        "tls": "",
        "sni": "",
        "alpn": "",
        "fp": "",
    }
    encoded = base64.b64encode(json.dumps(share).encode("utf-8")).decode("ascii")
    return f"vmess://{encoded}"


def parse_vmess_link(link: str) -> dict:
    """Decode a vmess:// URI back into its share object."""
    if not link.startswith("vmess://"):
        raise ValueError(f"Not a vmess link: {link!r}")
    return json.loads(base64.b64decode(link[len("vmess://"):]))
