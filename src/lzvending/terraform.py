"""Thin wrapper around the Terraform CLI.

Commands run as subprocesses in the module directory with
TF_IN_AUTOMATION set and interactive input disabled. A non-zero exit
raises TerraformError carrying the engine's own diagnostics.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import HarnessConfig, RetryPolicy
from .plan import PlanStruct

logger = logging.getLogger(__name__)

DEFAULT_PLAN_FILE = "tfplan"
DEFAULT_COMMAND_TIMEOUT_SECONDS = 3600

# `terraform plan -detailed-exitcode` result when changes are pending
PLAN_EXIT_CODE_CHANGES = 2


class TerraformError(Exception):
    """Raised when a Terraform command exits non-zero."""

    def __init__(self, command: list[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        super().__init__(
            f"terraform {command[0] if command else ''} failed with exit code {returncode}:\n{detail}"
        )


class NotIdempotentError(TerraformError):
    """Raised when a second plan after apply still reports changes."""


@dataclass
class TerraformOptions:
    """How to run Terraform against one working directory."""

    terraform_dir: Path
    vars: dict[str, Any] = field(default_factory=dict)
    var_files: list[Path] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    no_color: bool = True
    binary: str = "terraform"
    log_output: bool = False
    plan_file_path: Path | None = None
    timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS

    @classmethod
    def default(cls, terraform_dir: Path, config: HarnessConfig) -> TerraformOptions:
        return cls(
            terraform_dir=Path(terraform_dir),
            binary=config.terraform_binary,
            log_output=config.verbose,
        )

    @property
    def plan_file(self) -> Path:
        return self.plan_file_path or (self.terraform_dir / DEFAULT_PLAN_FILE)


def format_var(value: Any) -> str:
    """Render a variable value as a `-var` argument.

    Strings are passed raw. Maps and lists are passed as JSON, which is
    valid HCL expression syntax.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return json.dumps(value)


def _var_args(options: TerraformOptions) -> list[str]:
    args: list[str] = []
    for key in sorted(options.vars):
        args.extend(["-var", f"{key}={format_var(options.vars[key])}"])
    for var_file in options.var_files:
        args.extend(["-var-file", str(var_file)])
    return args


def _common_args(options: TerraformOptions) -> list[str]:
    return ["-no-color"] if options.no_color else []


def run(
    options: TerraformOptions,
    args: list[str],
    *,
    allowed_returncodes: tuple[int, ...] = (0,),
) -> subprocess.CompletedProcess[str]:
    """Run a Terraform command.

    Args:
        options: Terraform options (directory, binary, env).
        args: Command and arguments, without the binary.
        allowed_returncodes: Exit codes that are not treated as failure.

    Returns:
        The completed process.

    Raises:
        TerraformError: If the exit code is not allowed, the command times
            out, or the binary is missing.
    """
    full_env = os.environ.copy()
    full_env.setdefault("TF_IN_AUTOMATION", "1")
    full_env.update(options.env)
    cmd = [options.binary, *args]

    logger.debug(
        "Running terraform",
        extra={"command": args[0] if args else "", "terraform_dir": str(options.terraform_dir)},
    )

    try:
        result = subprocess.run(
            cmd,
            cwd=options.terraform_dir,
            env=full_env,
            timeout=options.timeout_seconds,
            capture_output=True,
            text=True,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise TerraformError(
            args, -1, "", f"timed out after {options.timeout_seconds}s"
        ) from e
    except FileNotFoundError as e:
        raise TerraformError(args, -1, "", f"terraform binary not found: {options.binary}") from e

    if options.log_output:
        for line in result.stdout.splitlines():
            logger.info(line, extra={"terraform_command": args[0] if args else ""})

    if result.returncode not in allowed_returncodes:
        raise TerraformError(args, result.returncode, result.stdout, result.stderr)
    return result


def init(options: TerraformOptions) -> None:
    run(options, ["init", "-input=false", "-upgrade=false", *_common_args(options)])


def plan(options: TerraformOptions) -> None:
    run(
        options,
        [
            "plan",
            "-input=false",
            "-lock=false",
            f"-out={options.plan_file}",
            *_common_args(options),
            *_var_args(options),
        ],
    )


def plan_exit_code(options: TerraformOptions) -> int:
    """Run `plan -detailed-exitcode`: 0 means no changes, 2 means changes pending."""
    result = run(
        options,
        [
            "plan",
            "-input=false",
            "-lock=false",
            "-detailed-exitcode",
            *_common_args(options),
            *_var_args(options),
        ],
        allowed_returncodes=(0, PLAN_EXIT_CODE_CHANGES),
    )
    return result.returncode


def show(options: TerraformOptions) -> PlanStruct:
    result = run(options, ["show", "-json", str(options.plan_file)])
    return PlanStruct.from_json(result.stdout)


def init_and_plan_and_show(options: TerraformOptions) -> PlanStruct:
    init(options)
    plan(options)
    return show(options)


def apply(options: TerraformOptions) -> None:
    run(
        options,
        [
            "apply",
            "-input=false",
            "-auto-approve",
            "-lock=false",
            *_common_args(options),
            *_var_args(options),
        ],
    )


def apply_idempotent(options: TerraformOptions) -> None:
    """Apply, then verify a second plan reports no changes.

    Raises:
        NotIdempotentError: If the configuration still has pending changes.
    """
    apply(options)
    code = plan_exit_code(options)
    if code == PLAN_EXIT_CODE_CHANGES:
        raise NotIdempotentError(
            ["plan"], code, "", "terraform configuration not idempotent: plan shows changes after apply"
        )


def destroy(options: TerraformOptions) -> None:
    run(
        options,
        [
            "destroy",
            "-input=false",
            "-auto-approve",
            "-lock=false",
            *_common_args(options),
            *_var_args(options),
        ],
    )


def destroy_with_retry(options: TerraformOptions, policy: RetryPolicy) -> None:
    """Destroy, retrying to ride out eventual consistency in the control plane.

    Raises:
        TerraformError: The last error if every attempt fails.
    """
    last_error: TerraformError | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            destroy(options)
            return
        except TerraformError as e:
            last_error = e
            if attempt < policy.max_attempts:
                logger.warning(
                    "Destroy failed, retrying",
                    extra={
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "wait_seconds": policy.interval_seconds,
                        "error": str(e),
                    },
                )
                time.sleep(policy.interval_seconds)

    assert last_error is not None, "Retry loop completed without setting last_error"
    raise last_error


def output(options: TerraformOptions, name: str) -> str:
    """Return a root module output as a raw string."""
    result = run(options, ["output", "-raw", *_common_args(options), name])
    return result.stdout.strip()
