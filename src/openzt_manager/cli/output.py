"""Table and JSON rendering for CLI results."""

import json
from datetime import datetime

from openzt_manager.cli.resolver import calculate_safe_id_length

LIST_COLUMNS = ("ID", "Created", "RDP Port", "Console", "Status", "RDP URL")


def _format_created(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S UTC")
    except ValueError:
        return value


def _format_status(instance: dict) -> str:
    state = instance.get("state", "unknown")
    if state == "error" and instance.get("status_message"):
        return f"error: {instance['status_message']}"
    return state


def format_instance(instance: dict) -> str:
    """Key/value block describing one instance."""
    rows = [
        ("ID", instance["id"]),
        ("Created", _format_created(instance["created_at"])),
        ("RDP URL", instance["rdp_url"]),
        ("RDP Port", str(instance["rdp_port"])),
        ("Console", str(instance["console_port"])),
        ("Status", _format_status(instance)),
    ]
    config = instance.get("config") or {}
    if config.get("has_rdp_password"):
        rows.append(("RDP Password", "set"))
    if instance.get("mods"):
        rows.append(("Mods", ", ".join(instance["mods"])))
    if instance.get("container_ref"):
        rows.append(("Container", instance["container_ref"][:12]))

    width = max(len(label) for label, _ in rows) + 1
    return "\n".join(f"  {label + ':':<{width}} {value}" for label, value in rows)


def format_instance_table(instances: list[dict]) -> str:
    """Aligned table with ids shortened to a length that keeps them unique."""
    id_length = calculate_safe_id_length([i["id"] for i in instances])
    rows = [LIST_COLUMNS] + [
        (
            i["id"][:id_length],
            _format_created(i["created_at"]),
            str(i["rdp_port"]),
            str(i["console_port"]),
            _format_status(i),
            i["rdp_url"],
        )
        for i in instances
    ]
    widths = [max(len(row[col]) for row in rows) for col in range(len(LIST_COLUMNS))]
    lines = ["  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip() for row in rows]
    lines.insert(1, "  ".join("-" * w for w in widths))
    return "\n".join(lines)


def format_health(health: dict) -> str:
    return "\n".join(
        [
            f"  Status:           {health['status']}",
            f"  Version:          {health.get('version', 'unknown')}",
            f"  Runtime:          {'reachable' if health['runtime_reachable'] else 'unreachable'}",
            f"  Instances:        {health['instances']}/{health['max_instances']}",
            f"  Free RDP ports:   {health['rdp_ports_available']}",
            f"  Free console:     {health['console_ports_available']}",
        ]
    )


def render(data: dict | list, output: str) -> str:
    """Render an API result in the requested format."""
    if output == "json":
        return json.dumps(data, indent=2)
    if isinstance(data, list):
        if not data:
            return "No instances found"
        return format_instance_table(data)
    if "runtime_reachable" in data:
        return format_health(data)
    return format_instance(data)
