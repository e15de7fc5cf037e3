"""On-disk deployment records."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

STATUS_DEPLOYED = "deployed"


def record_path(base_dir: Path, app_id: str, deployment_type: str) -> Path:
    return base_dir / app_id / f"{deployment_type}.json"


def write_record(
    base_dir: Path,
    app_id: str,
    deployment_type: str,
    *,
    status: str,
    worker_name: str,
    urls: dict[str, object],
) -> Path:
    path = record_path(base_dir, app_id, deployment_type)
    path.parent.mkdir(parents=True, exist_ok=True)
    record = {
        "app_id": app_id,
        "deployment_type": deployment_type,
        "status": status,
        "worker_name": worker_name,
        "urls": urls,
        "updated_at": datetime.now(UTC).isoformat(),
    }
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(record, indent=2, sort_keys=True))
    tmp.replace(path)
    return path


def read_record(base_dir: Path, app_id: str, deployment_type: str) -> dict[str, object]:
    path = record_path(base_dir, app_id, deployment_type)
    if not path.exists():
        return {}
    decoded = json.loads(path.read_text())
    return cast(dict[str, object], decoded if isinstance(decoded, dict) else {})


def is_live(base_dir: Path, app_id: str, deployment_type: str = "preview") -> bool:
    return read_record(base_dir, app_id, deployment_type).get("status") == STATUS_DEPLOYED
