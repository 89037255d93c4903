"""
Unit tests for the custom_script sandbox.

Validates that only the restricted expression language is accepted and that
step, time and size budgets are enforced.
"""

import pytest

from compliance_engine.services.compliance.exceptions import (
    ScriptExecutionError,
    ScriptTimeoutError,
    UnsafeScriptError,
)
from compliance_engine.services.compliance.script_sandbox import ScriptSandbox

RESOURCE = {
    "id": "i-123",
    "resource_type": "ec2",
    "region": "us-east-1",
    "is_encrypted": True,
    "is_public": False,
    "tags": {"Owner": "alice", "Environment": "Production"},
    "metadata": {"volumes": [{"size": 100, "encrypted": True}, {"size": 20, "encrypted": False}]},
}


@pytest.fixture
def sandbox() -> ScriptSandbox:
    return ScriptSandbox(timeout_ms=1000, max_steps=10000, max_sequence_length=1000)


def run_script(sandbox: ScriptSandbox, script: str, resource_data):
    return sandbox.run(sandbox.compile(script), resource_data)


@pytest.mark.unit
class TestExpressionLanguage:
    """Test supported syntax"""

    @pytest.mark.parametrize(
        "script,expected",
        [
            ("resource.is_encrypted", True),
            ("resource['is_public']", False),
            ("not resource.is_public and resource.is_encrypted", True),
            ("resource.tags.Owner == 'alice'", True),
            ("resource.tags.get('Team') is None", True),
            ("'Owner' in resource.tags", True),
            ("'Team' not in resource.tags.keys()", True),
            ("resource.tags.Environment.lower() == 'production'", True),
            ("resource.region.startswith('us-') or resource.region.startswith('eu-')", True),
            ("len(resource.metadata.volumes) >= 2", True),
            ("resource.metadata.volumes[0].size > 50", True),
            ("resource.metadata.volumes[5] is None", True),
            ("all([resource.is_encrypted, not resource.is_public])", True),
            ("max(1, 2, 3) * 2 == 6", True),
            ("resource.region.split('-')[0] == 'us'", True),
            ("1 < 2 < 3", True),
            ("'yes' if resource.is_encrypted else ''", True),
            ("resource.missing", False),
        ],
    )
    def test_evaluates(self, sandbox, script, expected) -> None:
        assert run_script(sandbox, script, RESOURCE) is expected

    def test_return_prefix_and_semicolon_are_tolerated(self, sandbox) -> None:
        assert run_script(sandbox, "return resource.is_encrypted;", RESOURCE) is True

    def test_normalize(self) -> None:
        assert ScriptSandbox.normalize("  return resource.is_public;; ") == "resource.is_public"
        assert ScriptSandbox.normalize("resource.returned") == "resource.returned"

    def test_compiled_script_is_reusable(self, sandbox) -> None:
        compiled = sandbox.compile("resource.is_encrypted")

        assert sandbox.run(compiled, {"is_encrypted": True}) is True
        assert sandbox.run(compiled, {"is_encrypted": False}) is False

    def test_script_cannot_mutate_caller_data(self, sandbox) -> None:
        data = {"tags": {"a": "1"}, "items": [1, 2]}

        run_script(sandbox, "resource.tags.items() and resource.tags.values()", data)

        assert data == {"tags": {"a": "1"}, "items": [1, 2]}


@pytest.mark.unit
class TestRejectedScripts:
    """Test that anything outside the language is rejected before running"""

    @pytest.mark.parametrize(
        "script",
        [
            "__import__('os')",
            "open('/etc/passwd').read()",
            "eval('1')",
            "resource.__class__",
            "resource.tags.__dict__",
            "[x for x in resource.tags]",
            "(lambda: 1)()",
            "resource.tags.update({'a': 1})",
            "getattr(resource, 'tags')",
            "len(*resource.tags)",
            "str(resource, encoding='utf-8')",
            "resource.region[0:2]",
            "{'a': 1}",
            "x := 1",
            "import os",
            "resource.is_public = True",
            "f'{resource.id}'",
            "2 ** 100",
            "1 << 5",
            "other_name",
        ],
    )
    def test_rejects(self, sandbox, script) -> None:
        with pytest.raises(UnsafeScriptError):
            sandbox.compile(script)

    @pytest.mark.parametrize("script", ["", "   ", None, 42])
    def test_rejects_empty_or_non_string(self, sandbox, script) -> None:
        with pytest.raises(UnsafeScriptError):
            sandbox.compile(script)

    def test_rejects_overlong_script(self, sandbox) -> None:
        with pytest.raises(UnsafeScriptError):
            sandbox.compile("resource.id == '" + "a" * 5000 + "'")

    def test_rejects_deep_nesting(self, sandbox) -> None:
        with pytest.raises(UnsafeScriptError):
            sandbox.compile("(" * 1000 + "1" + ")" * 1000)


@pytest.mark.unit
class TestLimits:
    """Test CPU, time and memory bounds"""

    def test_step_budget(self) -> None:
        sandbox = ScriptSandbox(timeout_ms=1000, max_steps=10)
        script = " and ".join(["resource.is_encrypted"] * 20)

        with pytest.raises(ScriptTimeoutError):
            run_script(sandbox, script, RESOURCE)

    def test_time_budget(self) -> None:
        sandbox = ScriptSandbox(timeout_ms=0, max_steps=10000)

        with pytest.raises(ScriptTimeoutError):
            run_script(sandbox, "resource.is_encrypted and resource.is_encrypted", RESOURCE)

    def test_timeout_override_per_run(self, sandbox) -> None:
        compiled = sandbox.compile("resource.is_encrypted and resource.is_encrypted")

        with pytest.raises(ScriptTimeoutError):
            sandbox.run(compiled, RESOURCE, timeout_ms=0)

    def test_string_repetition_is_bounded(self, sandbox) -> None:
        with pytest.raises(ScriptExecutionError):
            run_script(sandbox, "len('a' * 100000) > 0", RESOURCE)

    def test_list_repetition_is_bounded(self, sandbox) -> None:
        with pytest.raises(ScriptExecutionError):
            run_script(sandbox, "len([1, 2] * 1000) > 0", RESOURCE)

    def test_concatenation_is_bounded(self, sandbox) -> None:
        script = "len(resource.region + resource.region) > 0"
        data = {"region": "x" * 600}

        with pytest.raises(ScriptExecutionError):
            run_script(sandbox, script, data)

    def test_oversized_resource_data_rejected(self, sandbox) -> None:
        with pytest.raises(ScriptExecutionError):
            run_script(sandbox, "resource.tags", {"tags": {str(i): i for i in range(2000)}})


@pytest.mark.unit
class TestRuntimeErrors:
    """Test runtime failures surface as ScriptExecutionError"""

    @pytest.mark.parametrize(
        "script",
        [
            "resource.missing.deeper",
            "resource.region > 5",
            "1 / 0",
            "resource.tags['Owner'] + 1",
            "int('not a number')",
            "resource.region % 2",
            "-resource.region",
            "resource.metadata.volumes['first']",
        ],
    )
    def test_runtime_error(self, sandbox, script) -> None:
        with pytest.raises(ScriptExecutionError):
            run_script(sandbox, script, RESOURCE)
