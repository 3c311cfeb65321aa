from __future__ import annotations

import os
from pathlib import Path


def hunt_home() -> Path:
    configured = os.environ.get("HTH_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".hunting-the-heavens"


def catalog_path() -> Path:
    configured = os.environ.get("HTH_CATALOG_PATH", "").strip()
    if configured:
        return Path(configured).expanduser().resolve()
    return Path(__file__).resolve().with_name("riddles.yaml")


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    store = base / "store"
    session = base / "session"
    telemetry = base / "telemetry"
    for path in (base, store, session, telemetry):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "store": store, "session": session, "telemetry": telemetry}
