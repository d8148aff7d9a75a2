#!/usr/bin/env python3
"""
Compliance Control Catalog

The fixed set of SOC 2 controls that violations are classified against, plus
the ``Framework`` variant used to pick rule pattern families and fix idioms.

Usage:
    from controls import CONTROLS, Framework, get_control

    control = get_control("CC6.1")
    framework = Framework.from_name("django")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from types import MappingProxyType
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ACCESS_CONTROL = "CC6.1"
SECRETS = "CC6.7"
AUDIT_LOGGING = "CC7.2"
RESILIENCE = "A1.2"


@dataclass(frozen=True)
class Control:
    """Immutable catalog entry for one compliance control."""

    id: str
    name: str
    description: str
    requirement: str
    category: str


_CATALOG = (
    Control(
        id=ACCESS_CONTROL,
        name="Logical Access Controls",
        description=(
            "The organization restricts logical access to systems containing sensitive "
            "information by validating user identity and authenticating access requests."
        ),
        requirement="Implement authentication decorators and RBAC checks on sensitive operations.",
        category="CC6 - Access Control",
    ),
    Control(
        id=SECRETS,
        name="Cryptography - Encryption and Secrets",
        description=(
            "The organization protects sensitive information during transmission and storage, "
            "preventing exposure of secrets and enforcing TLS for external communication."
        ),
        requirement="No hardcoded secrets, move to environment variables, enforce HTTPS/TLS.",
        category="CC6 - Access Control",
    ),
    Control(
        id=AUDIT_LOGGING,
        name="Monitoring and Logging",
        description=(
            "The organization logs security-relevant events including user activity, "
            "system access and data changes."
        ),
        requirement="Implement audit logging on sensitive operations, prevent logging of sensitive data.",
        category="CC7 - System Monitoring",
    ),
    Control(
        id=RESILIENCE,
        name="Resilience and Error Handling",
        description=(
            "The organization maintains system resilience through error handling, retry "
            "logic and circuit breakers on external dependencies."
        ),
        requirement="Add try/catch blocks, timeouts and retry logic around external calls.",
        category="A1 - Service Availability",
    ),
)

CONTROLS: Mapping[str, Control] = MappingProxyType({c.id: c for c in _CATALOG})
ALL_CONTROL_IDS: tuple[str, ...] = tuple(CONTROLS)


def get_control(control_id: str) -> Optional[Control]:
    """Return the catalog entry for *control_id*, or ``None`` if unknown."""
    return CONTROLS.get(control_id)


def normalize_control_ids(control_ids) -> tuple[str, ...]:
    """Validate a collection of control ids, preserving catalog order.

    ``None`` or an empty collection selects every control.

    Raises:
        ValueError: If an id is not in the catalog.
    """
    if not control_ids:
        return ALL_CONTROL_IDS
    if isinstance(control_ids, str):
        control_ids = [c.strip() for c in control_ids.split(",") if c.strip()]
    unknown = sorted(set(control_ids) - set(CONTROLS))
    if unknown:
        raise ValueError(
            f"Unknown control id(s) {unknown}. Must be one of {list(ALL_CONTROL_IDS)}."
        )
    wanted = set(control_ids)
    return tuple(c for c in ALL_CONTROL_IDS if c in wanted)


# ---------------------------------------------------------------------------
# Frameworks
# ---------------------------------------------------------------------------

PYTHON_EXTENSIONS = (".py",)
JAVASCRIPT_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")


class Language(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"


class Framework(str, Enum):
    """Web framework a file is written against."""

    DJANGO = "django"
    FLASK = "flask"
    EXPRESS = "express"
    NEXT_REACT = "nextjs"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "Framework":
        """Map a loose framework name onto the variant.

        Unrecognized or empty names map to ``UNKNOWN`` rather than raising.
        """
        if isinstance(name, Framework):
            return name
        key = (name or "").strip().lower()
        return _FRAMEWORK_ALIASES.get(key, cls.UNKNOWN)

    @classmethod
    def default_for_path(cls, file_path: str) -> "Framework":
        """Framework assumed for a file whose project framework is unknown."""
        suffix = PurePath(file_path).suffix.lower()
        if suffix in PYTHON_EXTENSIONS:
            return cls.DJANGO
        if suffix in JAVASCRIPT_EXTENSIONS:
            return cls.EXPRESS
        return cls.UNKNOWN

    @property
    def language(self) -> Optional[Language]:
        return FRAMEWORK_LANGUAGE.get(self)


_FRAMEWORK_ALIASES = {
    "django": Framework.DJANGO,
    "flask": Framework.FLASK,
    "fastapi": Framework.FLASK,
    "express": Framework.EXPRESS,
    "node": Framework.EXPRESS,
    "nextjs": Framework.NEXT_REACT,
    "next": Framework.NEXT_REACT,
    "next.js": Framework.NEXT_REACT,
    "react": Framework.NEXT_REACT,
}

FRAMEWORK_LANGUAGE: Mapping[Framework, Language] = MappingProxyType({
    Framework.DJANGO: Language.PYTHON,
    Framework.FLASK: Language.PYTHON,
    Framework.EXPRESS: Language.JAVASCRIPT,
    Framework.NEXT_REACT: Language.JAVASCRIPT,
})


def language_for_path(file_path: str) -> Optional[Language]:
    suffix = PurePath(file_path).suffix.lower()
    if suffix in PYTHON_EXTENSIONS:
        return Language.PYTHON
    if suffix in JAVASCRIPT_EXTENSIONS:
        return Language.JAVASCRIPT
    return None


__all__ = [
    "ACCESS_CONTROL",
    "SECRETS",
    "AUDIT_LOGGING",
    "RESILIENCE",
    "ALL_CONTROL_IDS",
    "CONTROLS",
    "Control",
    "Framework",
    "Language",
    "FRAMEWORK_LANGUAGE",
    "get_control",
    "language_for_path",
    "normalize_control_ids",
]
