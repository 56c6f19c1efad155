from __future__ import annotations

import subprocess

from .command_utils import capture_cmd, has_cmd, log, run_cmd
from .errors import ProvisioningError
from .models import ToolchainSpec


def matches_toolchain_name(name: str, channel: str) -> bool:
    """'nightly' matches 'nightly' and host-qualified 'nightly-x86_64-unknown-linux-gnu'."""
    return name == channel or name.startswith(channel + "-")


def matches_component_name(name: str, component: str) -> bool:
    # rustup lists 'llvm-tools-preview' as 'llvm-tools-<host>' once installed.
    for candidate in {component, component.removesuffix("-preview")}:
        if name == candidate or name.startswith(candidate + "-"):
            return True
    return False


def query(args: list[str]) -> list[str]:
    try:
        output = capture_cmd(args)
    except subprocess.CalledProcessError as exc:
        raise ProvisioningError(f"'{' '.join(args)}' failed with exit code {exc.returncode}") from exc
    return [line.split()[0] for line in output.splitlines() if line.strip()]


def install(args: list[str], what: str) -> None:
    try:
        run_cmd(args)
    except subprocess.CalledProcessError as exc:
        raise ProvisioningError(f"{what} is unavailable (exit code {exc.returncode})") from exc


def is_toolchain_installed(channel: str) -> bool:
    return any(matches_toolchain_name(name, channel) for name in query(["rustup", "toolchain", "list"]))


def is_toolchain_active(channel: str) -> bool:
    # rustup exits non-zero here when no toolchain is active yet.
    try:
        output = capture_cmd(["rustup", "show", "active-toolchain"])
    except subprocess.CalledProcessError:
        return False
    active = output.split()
    return bool(active) and matches_toolchain_name(active[0], channel)


def missing_components(spec: ToolchainSpec) -> list[str]:
    installed = query(
        ["rustup", "component", "list", "--installed", "--toolchain", spec.compiler_channel]
    )
    return [
        component
        for component in sorted(spec.components)
        if not any(matches_component_name(name, component) for name in installed)
    ]


def provision_toolchain(spec: ToolchainSpec) -> list[str]:
    """
    Bring the environment to the requested toolchain state.

    Only read-only queries run when everything is already in place, so repeated
    calls leave the environment unchanged. Returns the install actions taken.
    """
    for command in ("rustup", "cargo"):
        if not has_cmd(command):
            raise ProvisioningError(f"Missing required command: {command}")

    channel = spec.compiler_channel
    actions: list[str] = []

    if not is_toolchain_installed(channel):
        log(f"      install toolchain {channel}")
        install(
            ["rustup", "toolchain", "install", channel, "--profile", "minimal"],
            f"toolchain '{channel}'",
        )
        actions.append(f"toolchain:{channel}")

    if spec.override and not is_toolchain_active(channel):
        log(f"      select {channel} as the toolchain for this directory")
        install(["rustup", "override", "set", channel], f"override to '{channel}'")
        actions.append(f"override:{channel}")

    for component in missing_components(spec):
        log(f"      add component {component} for {channel}")
        install(
            ["rustup", "component", "add", component, "--toolchain", channel],
            f"component '{component}' for toolchain '{channel}'",
        )
        actions.append(f"component:{component}")

    tool = spec.instrumentation_tool
    if not has_cmd(tool):
        log(f"      cargo install {tool}")
        args = ["cargo", "install", tool]
        if spec.locked_install:
            args.append("--locked")
        install(args, f"instrumentation tool '{tool}'")
        actions.append(f"tool:{tool}")

    if not actions:
        log("      toolchain already provisioned")
    return actions
