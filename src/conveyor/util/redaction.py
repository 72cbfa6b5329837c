from __future__ import annotations

"""Redaction utility.

CONTRACT
- Inputs: text strings
- Outputs:
  - redacted text string
- Invariants:
  - Replaces every known secret value with `***`
  - Replaces common token shapes (GitHub tokens, OpenAI keys) as well
  - Longer secrets are masked first so a secret containing another secret
    is never partially revealed
  - redact_tail() also masks a leading fragment left when output was cut
    inside a secret
- Failure:
  - None (returns original text when nothing matches)
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

MASK = "***"

DEFAULT_PATTERNS = [
    re.compile(r"ghp_[A-Za-z0-9]{20,}"),
    re.compile(r"ghs_[A-Za-z0-9]{20,}"),
    re.compile(r"github_pat_[A-Za-z0-9_]{20,}"),
    re.compile(r"sk-[A-Za-z0-9]{20,}"),
]


@dataclass(frozen=True)
class Redactor:
    secrets: tuple[str, ...] = ()
    patterns: list[re.Pattern] = field(default_factory=lambda: list(DEFAULT_PATTERNS))

    @classmethod
    def for_values(cls, values: Iterable[str]) -> Redactor:
        # Empty values would mask every position of the text.
        unique = {v for v in values if v}
        return cls(secrets=tuple(sorted(unique, key=len, reverse=True)))

    def redact(self, text: str) -> str:
        out = text
        for secret in self.secrets:
            out = out.replace(secret, MASK)
        for pat in self.patterns:
            out = pat.sub(MASK, out)
        return out

    def redact_tail(self, text: str) -> str:
        """Redact text whose beginning was cut off, possibly mid-secret.

        A leading fragment that is the end of a known secret is masked too.
        """
        for secret in self.secrets:
            if text.startswith(secret):
                continue
            for n in range(len(secret) - 1, 0, -1):
                if text.startswith(secret[-n:]):
                    text = MASK + text[n:]
                    break
        return self.redact(text)

    def redact_mapping(self, data: dict[str, str]) -> dict[str, str]:
        return {k: self.redact(v) for k, v in data.items()}
