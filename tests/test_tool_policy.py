from __future__ import annotations

from acpbridge.bridge.tool_policy import (
    ask_every_time,
    permission_options,
    policy_from_env,
    read_only_policy,
    tool_kind,
)


def test_tool_kind_classification() -> None:
    assert tool_kind("read_file") == "read"
    assert tool_kind("ls") == "execute"
    assert tool_kind("write_file") == "edit"
    assert tool_kind("plan") == "think"
    assert tool_kind("get_weather") == "read"
    assert tool_kind("grep_repo") == "search"
    assert tool_kind("deploy") == "other"


def test_read_only_policy_requires_permission_for_side_effects() -> None:
    policy = read_only_policy()

    assert not policy.requires_permission("read_file", {}, "act")
    assert not policy.requires_permission("plan", {}, "plan")
    assert policy.requires_permission("ls", {"path": "."}, "act")
    assert policy.requires_permission("write_file", {}, "act")


def test_read_only_policy_extras_accept_names_and_kinds() -> None:
    policy = read_only_policy(["edit", "deploy", " "])

    assert not policy.requires_permission("write_file", {}, "act")
    assert not policy.requires_permission("deploy", {}, "act")
    assert policy.requires_permission("run_command", {}, "act")


def test_policy_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ACPBRIDGE_AUTO_APPROVE", "ls, execute")

    policy = policy_from_env()

    assert not policy.requires_permission("ls", {}, "act")
    assert not policy.requires_permission("run_command", {}, "act")
    assert policy.requires_permission("write_file", {}, "act")


def test_ask_every_time_and_options() -> None:
    assert ask_every_time().requires_permission("read_file", {}, "act")
    assert [option.kind for option in permission_options()] == ["allow_once", "allow_always", "reject_once"]
