from __future__ import annotations

from pathlib import Path

import pydantic
import pytest

from cognategov import GovernanceConfig
from cognategov.errors import ValidationError


def test_defaults() -> None:
    config = GovernanceConfig()

    assert config.ledger_path is None
    assert config.hash_algorithm == "sha256"
    assert (config.default_page_size, config.max_page_size) == (25, 500)
    assert config.redact_context is True
    assert config.approval_max_ttl_seconds is None
    assert config.max_tracked_actions == 10_000


def test_from_env_reads_prefixed_variables() -> None:
    config = GovernanceConfig.from_env(
        {
            "COGNATEGOV_LEDGER_PATH": "/var/lib/cognategov/ledger.jsonl",
            "COGNATEGOV_HASH_ALGORITHM": "sha512",
            "COGNATEGOV_DEFAULT_PAGE_SIZE": "50",
            "COGNATEGOV_ESCALATION_POLL_SECONDS": "0.5",
            "COGNATEGOV_REDACT_CONTEXT": "off",
            "COGNATEGOV_SIGNING_KEY_PATH": "  ",
            "UNRELATED": "x",
        }
    )

    assert config.ledger_path == Path("/var/lib/cognategov/ledger.jsonl")
    assert config.hash_algorithm == "sha512"
    assert config.default_page_size == 50
    assert config.escalation_poll_seconds == 0.5
    assert config.redact_context is False
    assert config.signing_key_path is None


def test_from_env_rejects_bad_boolean() -> None:
    with pytest.raises(ValidationError) as excinfo:
        GovernanceConfig.from_env({"COGNATEGOV_REDACT_CONTEXT": "maybe"})
    assert excinfo.value.issues == ("COGNATEGOV_REDACT_CONTEXT: not a boolean: 'maybe'",)


def test_from_env_reports_field_issues() -> None:
    with pytest.raises(ValidationError) as excinfo:
        GovernanceConfig.from_env({"COGNATEGOV_MAX_PAGE_SIZE": "lots"})
    assert excinfo.value.issues[0].startswith("COGNATEGOV_MAX_PAGE_SIZE:")


def test_from_env_reports_cross_field_issues() -> None:
    with pytest.raises(ValidationError) as excinfo:
        GovernanceConfig.from_env({"COGNATEGOV_DEFAULT_PAGE_SIZE": "100", "COGNATEGOV_MAX_PAGE_SIZE": "10"})
    assert excinfo.value.issues[0].startswith("COGNATEGOV_CONFIG:")
    assert "default_page_size must not exceed max_page_size" in excinfo.value.issues[0]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"hash_algorithm": "md5"},
        {"escalation_poll_seconds": 0},
        {"approval_max_ttl_seconds": -1},
        {"default_page_size": 0},
        {"ledger_dir": "/tmp"},
        {"max_tracked_actions": 0},
    ],
)
def test_invalid_settings_are_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(pydantic.ValidationError):
        GovernanceConfig(**kwargs)  # type: ignore[arg-type]
