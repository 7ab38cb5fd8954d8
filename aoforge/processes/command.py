"""Translate project config and launch options into an aos command line."""

from __future__ import annotations

from aoforge.project.config import AOConfig
from aoforge.types import DEFAULT_PROCESS_NAME, ProcessOptions


def resolve_process_name(config: AOConfig | None, options: ProcessOptions) -> str:
    """options.name -> config.process_name -> "default"."""
    if options.name:
        return options.name
    if config is not None and config.process_name:
        return config.process_name
    return DEFAULT_PROCESS_NAME


def build_aos_args(name: str, config: AOConfig, options: ProcessOptions) -> list[str]:
    """Arguments for `aos`, without the binary itself.

    The process name is always the first positional argument. Flags are only
    present when their option is set; --tag-name/--tag-value need both.
    """
    args = [name]

    if options.wallet:
        args += ["--wallet", options.wallet]

    for lua_file in config.lua_files:
        args += ["--load", lua_file]

    if options.data:
        args += ["--data", options.data]
    if options.tag_name and options.tag_value:
        args += ["--tag-name", options.tag_name, "--tag-value", options.tag_value]
    if options.module:
        args += ["--module", options.module]
    if options.cron:
        args += ["--cron", options.cron]
    if options.monitor:
        args.append("--monitor")
    if options.sqlite:
        args.append("--sqlite")
    if options.gateway_url:
        args += ["--gateway-url", options.gateway_url]
    if options.cu_url:
        args += ["--cu-url", options.cu_url]
    if options.mu_url:
        args += ["--mu-url", options.mu_url]

    return args
