"""Fake Terraform CLI for harness tests.

Patches subprocess.run inside lzvending.terraform so the command wrappers
and scenarios can be tested without a terraform binary.

Usage:
    from tf_mock import FakeTerraform

    with FakeTerraform(show_json=plan_json) as tf:
        with Scenario(config, module_dir) as sc:
            sc.plan()
        assert tf.subcommands == ["init", "plan", "show"]
"""

from .fake import FakeTerraform, TerraformCall, plan_json

__all__ = ["FakeTerraform", "TerraformCall", "plan_json"]
