from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from mirrorcal.config_manager import ConfigManager
from mirrorcal.errors import ConfigurationError
from mirrorcal.scheduler import SyncScheduler
from mirrorcal.state_store import StateStore
from mirrorcal.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class PairSyncRequest(BaseModel):
    pairs: list[str] = Field(default_factory=list)


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def create_app() -> FastAPI:
    config_path = os.getenv("MIRRORCAL_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("MIRRORCAL_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="mirrorcal Admin", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.load().to_dict()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        try:
            updated = app.state.context.config_manager.update(request.payload)
        except (ConfigurationError, TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"message": "config updated", "config": updated.to_dict()}

    @app.get("/api/pairs")
    def list_pairs() -> dict[str, Any]:
        config = app.state.context.config_manager.load()
        rows = []
        for pair in config.pairs:
            row = pair.to_dict()
            row["cursor"] = app.state.context.sync_engine.cursor_store(pair.name).describe()
            rows.append(row)
        return {"pairs": rows}

    @app.post("/api/pairs/{name}/reset-cursor")
    def reset_cursor(name: str) -> dict[str, Any]:
        config = app.state.context.config_manager.load()
        if config.get_pair(name) is None:
            raise HTTPException(status_code=404, detail="pair not found")
        cursor_store = app.state.context.sync_engine.reset_cursor(name)
        return {"message": "cursor reset", "cursor": cursor_store.describe()}

    @app.post("/api/sync/run")
    def trigger_sync() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.post("/api/sync/run-pairs")
    def run_pairs(request: PairSyncRequest) -> dict[str, Any]:
        config = app.state.context.config_manager.load()
        unknown = [name for name in request.pairs if config.get_pair(name) is None]
        if unknown:
            raise HTTPException(status_code=404, detail=f"unknown pairs: {', '.join(unknown)}")
        result = app.state.context.sync_engine.run_once(
            trigger="manual-pairs",
            pair_names=request.pairs or None,
        )
        return {"message": "sync completed", "result": result.to_dict()}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20, pair: str | None = None) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit, pair=pair)}

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, run_id: int | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)}

    return app
