"""
Tests for the CDK app entry point.

The entry point must abort before declaring any resource when the
environment or the startup script is missing.
"""

import functools
import json
from pathlib import Path
from unittest.mock import patch

import aws_cdk as cdk
import pytest
from structlog.contextvars import get_contextvars

import app
from config.exceptions import StartupScriptError
from config.settings import MISSING_ENVIRONMENT_MESSAGE


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run from an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)


class TestMain:
    """Tests for app.main."""

    @pytest.mark.parametrize(
        "missing",
        [
            ["CDK_DEFAULT_ACCOUNT"],
            ["CDK_DEFAULT_REGION"],
            ["CDK_DEFAULT_ACCOUNT", "CDK_DEFAULT_REGION"],
        ],
    )
    def test_missing_environment_aborts_before_declaring(
        self, deployment_env, monkeypatch: pytest.MonkeyPatch, missing: list[str]
    ) -> None:
        for name in missing:
            monkeypatch.delenv(name)

        with patch.object(app, "ServicesStack") as services_stack:
            with pytest.raises(SystemExit) as exc_info:
                app.main()

        assert exc_info.value.code == MISSING_ENVIRONMENT_MESSAGE
        services_stack.assert_not_called()

    def test_missing_startup_script_aborts_before_synth(self, deployment_env) -> None:
        error = StartupScriptError("scripts/ec2-init.sh")

        with (
            patch.object(app, "ServicesStack", side_effect=error),
            patch.object(app, "add_validation_aspects") as add_aspects,
        ):
            with pytest.raises(SystemExit) as exc_info:
                app.main()

        assert exc_info.value.code == "Failed to read UserData script file: scripts/ec2-init.sh"
        add_aspects.assert_not_called()

    def test_synthesizes_cloud_assembly(self, deployment_env, tmp_path: Path) -> None:
        outdir = tmp_path / "cdk.out"

        # The jsii runtime keeps the environment it started with, so CDK_OUTDIR
        # cannot be set per test; the output directory is passed to the App instead.
        with patch.object(app.cdk, "App", functools.partial(cdk.App, outdir=str(outdir))):
            app.main()

        template_path = outdir / f"{app.STACK_NAME}.template.json"
        assert template_path.is_file()

        template = json.loads(template_path.read_text())
        resource_types = {resource["Type"] for resource in template["Resources"].values()}
        assert "AWS::EC2::Instance" in resource_types
        assert "AWS::CodePipeline::Pipeline" in resource_types

    def test_context_cleared_after_synth(self, deployment_env, tmp_path: Path) -> None:
        outdir = tmp_path / "cdk.out"

        with patch.object(app.cdk, "App", functools.partial(cdk.App, outdir=str(outdir))):
            app.main()

        assert "stack_name" not in get_contextvars()
        assert "env" not in get_contextvars()

    def test_context_cleared_when_startup_script_missing(self, deployment_env) -> None:
        error = StartupScriptError("scripts/ec2-init.sh")

        with patch.object(app, "ServicesStack", side_effect=error):
            with pytest.raises(SystemExit):
                app.main()

        assert "stack_name" not in get_contextvars()
