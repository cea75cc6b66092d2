"""
Region Value Object

Architectural Intent:
- Immutable value object for a configured deployment target
- Pairs the provider's region code with a human-readable display name
- Derives the proxy outbound tag used by the local V2Ray config
"""

import re
from dataclasses import dataclass

_REGION_CODE_RE = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d+$")


@dataclass(frozen=True)
class Region:
    """
    Value Object representing a provisionable region.
    """
    code: str
    name: str = ""
    template_id: str = ""

    def __post_init__(self) -> None:
        if not _REGION_CODE_RE.match(self.code):
            raise ValueError(f"Invalid region code: {self.code!r}")
        if not self.name:
            object.__setattr__(self, "name", self.code)

    @property
    def outbound_tag(self) -> str:
        return outbound_tag_for(self.code)

    def __str__(self) -> str:
        return self.code


def outbound_tag_for(region_code: str) -> str:
    """Proxy outbound tag for a region: out_aws_ap_east_1."""
    return "out_aws_" + region_code.replace("-", "_")
