"""Shared versioned contracts for machine-readable sheet-splitter outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from sheet_splitter import __version__ as TOOL_VERSION

TOOL_NAME = "sheet-splitter"

CONTRACT_VERSIONS = {
    "sheet_splitter.inspect": "1.0.0",
    "sheet_splitter.plan": "1.0.0",
    "sheet_splitter.merge_summary": "1.0.0",
    "sheet_splitter.split_summary": "1.0.0",
    "sheet_splitter.clean_summary": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_paths: Sequence[Path],
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": TOOL_NAME,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_files": [str(path) for path in input_paths],
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def stamp_payload(name: str, payload: dict[str, Any], run_summary: dict[str, Any]) -> dict[str, Any]:
    """Prefix `payload` with the contract block, schema/tool versions and run summary."""
    contract = build_contract(name)
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "run_summary": run_summary,
        **payload,
    }
