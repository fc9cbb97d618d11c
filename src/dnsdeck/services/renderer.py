"""Render the Unbound managed include file from an UpstreamConfig."""

from __future__ import annotations

from dnsdeck.storage.models import DotProvider, UpstreamConfig

HEADER = (
    "# dnsdeck managed configuration",
    "# DO NOT EDIT MANUALLY - changes will be overwritten",
)


def enabled_dot_providers(config: UpstreamConfig) -> list[DotProvider]:
    """Enabled DoT providers in ascending priority; ties keep list order."""
    return sorted((p for p in config.dot_providers if p.enabled), key=lambda p: p.priority)


def forward_addr(provider: DotProvider) -> str:
    addr = f"{provider.address}@{provider.port}"
    if provider.sni:
        addr += f"#{provider.sni}"
    return addr


def render(config: UpstreamConfig) -> str:
    """Pure and deterministic: the same config always yields the same text."""
    lines = [*HEADER, "", f"# Mode: {config.mode}", ""]

    if config.mode == "dot":
        providers = enabled_dot_providers(config)
        if providers:
            lines.append("forward-zone:")
            lines.append('    name: "."')
            lines.append("    forward-tls-upstream: yes")
            for provider in providers:
                lines.append(f"    forward-addr: {forward_addr(provider)}")
        else:
            lines.append("# No enabled DoT providers - falling back to recursive resolution")
    elif config.mode == "doh":
        # The local proxy performs the HTTPS fetch; Unbound only forwards to it
        lines.append(f"# DoH mode - forwarding to local {config.doh_proxy.type} proxy")
        lines.append("forward-zone:")
        lines.append('    name: "."')
        lines.append(f"    forward-addr: 127.0.0.1@{config.doh_proxy.local_port}")
    else:
        lines.append("# Recursive mode - direct root resolution")
        lines.append("# No forward-zone configuration")

    return "\n".join(lines) + "\n"
