"""Runtime configuration for a governance engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import model_validator

from .errors import ValidationError

ENV_PREFIX = "COGNATEGOV_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class GovernanceConfig(BaseModel):
    """Settings for :meth:`GovernanceEngine.from_config`.

    ``ledger_path`` of ``None`` keeps the ledger in memory.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ledger_path: Path | None = None
    hash_algorithm: str = "sha256"
    default_page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=500, ge=1)
    escalation_poll_seconds: float = Field(default=1.0, gt=0)
    approval_max_ttl_seconds: float | None = Field(default=None, gt=0)
    max_tracked_actions: int = Field(default=10_000, ge=1)
    redact_context: bool = True
    signing_key_path: Path | None = None
    public_key_path: Path | None = None

    @model_validator(mode="after")
    def _check_pages(self) -> "GovernanceConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        if self.hash_algorithm not in ("sha256", "sha512"):
            raise ValueError(f"unsupported hash_algorithm: {self.hash_algorithm!r}")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GovernanceConfig":
        """Read ``COGNATEGOV_*`` variables, e.g. ``COGNATEGOV_LEDGER_PATH``.

        Unset or empty variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None or not raw.strip():
                continue
            raw = raw.strip()
            if name == "redact_context":
                lowered = raw.lower()
                if lowered not in _TRUE | _FALSE:
                    raise ValidationError(
                        "invalid configuration", [f"{ENV_PREFIX}REDACT_CONTEXT: not a boolean: {raw!r}"]
                    )
                values[name] = lowered in _TRUE
            else:
                values[name] = raw
        try:
            return cls.model_validate(values)
        except PydanticValidationError as exc:
            issues = [
                f"{ENV_PREFIX}{'.'.join(str(part) for part in err['loc']).upper() or 'CONFIG'}: {err['msg']}"
                for err in exc.errors()
            ]
            raise ValidationError("invalid configuration", issues) from exc
