from __future__ import annotations

import pytest

from proof_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigValidationError,
    Field,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def _issue_paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_defaults_validate_cleanly() -> None:
    result = validate_config(default_config())
    assert result.is_valid
    assert result.config is not None
    assert result.config["pipeline"]["max_revisions"] == 3


def test_default_config_returns_independent_copy() -> None:
    copy_a = default_config()
    copy_a["pipeline"]["max_revisions"] = 99
    assert DEFAULT_CONFIG["pipeline"]["max_revisions"] == 3
    assert default_config()["pipeline"]["max_revisions"] == 3


def test_unknown_field_is_reported_with_path() -> None:
    config = merge_config(default_config(), {"pipeline": {"max_cycles": 3}})
    result = validate_config(config)
    assert not result.is_valid
    assert [(i.path, i.message) for i in result.issues] == [
        ("pipeline.max_cycles", "unknown field")
    ]


def test_sensitive_field_gets_secret_message() -> None:
    config = merge_config(default_config(), {"agent": {"auth_token": "abc"}})
    (issue,) = validate_config(config).issues
    assert issue.path == "agent.auth_token"
    assert issue.message.startswith("embedded secret values are forbidden")


def test_type_and_range_errors() -> None:
    config = merge_config(
        default_config(),
        {
            "pipeline": {"max_revisions": 0, "max_phase_attempts": True},
            "verification": {"build_command": "   "},
            "policy": {"command_scan_mode": "sometimes"},
        },
    )
    issues = {issue.path: issue.message for issue in validate_config(config).issues}
    assert issues["pipeline.max_revisions"] == "must be >= 1"
    assert issues["pipeline.max_phase_attempts"] == "expected integer, got bool"
    assert issues["verification.build_command"] == "must not be empty"
    assert "expected one of: always, restricted_paths_only" in issues["policy.command_scan_mode"]


def test_phases_per_cycle_upper_bound() -> None:
    config = merge_config(default_config(), {"pipeline": {"phases_per_cycle": 65}})
    assert _issue_paths(config) == ["pipeline.phases_per_cycle"]


def test_missing_section_is_required() -> None:
    config = default_config()
    del config["locks"]  # type: ignore[misc]
    assert _issue_paths(config) == ["locks"]


def test_schema_version_mismatch_gives_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})
    with pytest.raises(ConfigValidationError, match="upgrade the proof-orchestrator runtime"):
        assert_valid_config(config)
    assert "older than supported" in migration_guidance(0)
    assert migration_guidance(1) == "schema version is current"


def test_empty_agent_command_means_unconfigured() -> None:
    config = merge_config(default_config(), {"agent": {"command": "  "}})
    validated = assert_valid_config(config)
    assert validated["agent"]["command"] == ""


def test_profile_overlay_merges_and_revalidates() -> None:
    overlaid = apply_profile_overlay(default_config(), "strict")
    assert overlaid["pipeline"]["max_revisions"] == 2
    assert overlaid["pipeline"]["max_program_cycles"] == 20

    bad = merge_config(
        default_config(), {"profiles": {"broken": {"pipeline": {"max_revisions": -1}}}}
    )
    with pytest.raises(ConfigValidationError, match="profiles.broken.pipeline.max_revisions"):
        assert_valid_config(bad)


def test_profile_overlay_cannot_touch_meta() -> None:
    config = merge_config(
        default_config(), {"profiles": {"custom": {"meta": {"schema_version": 1}}}}
    )
    assert _issue_paths(config) == ["profiles.custom.meta"]


def test_redact_config_masks_sensitive_keys() -> None:
    redacted = redact_config({"agent": {"command": "claude", "password": "hunter2"}})
    assert redacted == {"agent": {"command": "claude", "password": "<redacted>"}}
    assert redact_config("not-a-mapping") == {}


def test_merge_config_is_deep_and_non_mutating() -> None:
    base = {"a": {"b": 1, "c": [1, 2]}}
    merged = merge_config(base, {"a": {"b": 2}})
    assert merged == {"a": {"b": 2, "c": [1, 2]}}
    merged["a"]["c"].append(3)
    assert base["a"]["c"] == [1, 2]


def test_path_fields_follow_the_field_table() -> None:
    assert ("paths", "state_db") in PATH_FIELDS
    assert ("observability", "log_dir") in PATH_FIELDS
    assert ("verification", "build_command") not in PATH_FIELDS


def test_pattern_lists_report_each_bad_item() -> None:
    config = merge_config(
        default_config(), {"policy": {"extra_forbidden_patterns": ["ok", 3, "  "]}}
    )
    issues = {issue.path: issue.message for issue in validate_config(config).issues}

    assert issues == {
        "policy.extra_forbidden_patterns[1]": "expected string, got int",
        "policy.extra_forbidden_patterns[2]": "must not be empty",
    }
    assert Field("patterns", []).check(("a", " b "), "p") == (["a", "b"], [])


@pytest.mark.parametrize(
    ("key", "sensitive"),
    [("auth_token", True), ("apiKey", True), ("clientSecret", True), ("mirror_file_modes", False)],
)
def test_credential_like_keys(key: str, sensitive: bool) -> None:
    config = merge_config(default_config(), {"locks": {key: "x"}})
    (issue,) = validate_config(config).issues
    assert issue.message.startswith("embedded secret") is sensitive
