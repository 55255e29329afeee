"""
REST API for the trigger engine.

Lets the transcription bridge, the game-engine poller and the reasoning
service talk to one AssistantRuntime over HTTP.

Run with:
    python -m stagecue.api --config stagecue.yaml
"""
from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .config import AssistantConfig, load_config
from .logging_config import configure_logging
from .runtime import AssistantRuntime
from .types import NpcCacheEntry, SceneIndexEntry, TranscriptSegment

logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class SegmentModel(BaseModel):
    """A finalized transcript segment."""
    text: str
    timestamp: str = Field(..., description="ISO-8601 time the segment started")
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    speaker_label: Optional[str] = None


class TranscriptRequest(BaseModel):
    segments: List[SegmentModel]


class RowModel(BaseModel):
    """A raw transcription row, possibly still interim."""
    id: str
    transcript: str = ""
    segment_start: str = ""
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    speaker_label: Optional[str] = None
    is_final: bool = True


class TranscriptRowsRequest(BaseModel):
    rows: List[RowModel]
    session_id: Optional[str] = None


class GameEventRequest(BaseModel):
    event_type: str = Field(..., description="e.g. sceneChange")
    data: Dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    content: str
    timestamp: Optional[str] = None
    is_gm: bool = True


class NpcEntryModel(BaseModel):
    key: str
    display_name: str
    pronunciation: str = ""
    brief: str = ""
    full_card: str = ""
    aliases: List[str] = Field(default_factory=list)


class NpcCacheRequest(BaseModel):
    entries: List[NpcEntryModel]


class SceneEntryModel(BaseModel):
    id: str
    title: str
    card: str = ""
    keywords: List[str] = Field(default_factory=list)
    npcs: List[str] = Field(default_factory=list)


class SceneIndexRequest(BaseModel):
    entries: List[SceneEntryModel]


# ============================================================================
# API Server
# ============================================================================

class StageCueAPIServer:
    """
    FastAPI-based REST server around one AssistantRuntime.

    Provides endpoints for:
    - Transcript and game-event ingestion
    - GM chat commands
    - Installing externally built NPC/scene tables
    - State, stats and recent batch queries
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        runtime: Optional[AssistantRuntime] = None,
        start_ticker: bool = True,
    ):
        """
        Initialize the API server.

        Args:
            config: Engine configuration (ignored if runtime is given)
            runtime: Pre-built runtime, mainly for tests
            start_ticker: Run the background ticker on startup
        """
        self.runtime = runtime or AssistantRuntime(config)
        self.start_ticker = start_ticker

        self.app = FastAPI(
            title="StageCue Trigger Engine API",
            description="Real-time trigger classification for a tabletop GM assistant",
            version=__version__,
            lifespan=self._lifespan,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._register_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        if not self.runtime.is_running:
            self.runtime.start(ticker=self.start_ticker)
        try:
            yield
        finally:
            self.runtime.stop()

    def _register_routes(self):
        """Register all API routes."""
        runtime = self.runtime

        @self.app.get("/")
        async def root():
            """API health check."""
            return {
                "status": "ok",
                "engine": "StageCue",
                "version": __version__,
                "assistant_state": runtime.pacing.assistant_state.value,
            }

        @self.app.get("/state")
        async def get_state():
            return runtime.snapshot()

        @self.app.get("/stats")
        async def get_stats():
            return runtime.stats()

        @self.app.get("/batches")
        async def get_batches(limit: int = Query(10, ge=1, le=100)):
            return [b.to_dict() for b in runtime.recent_batches(limit)]

        @self.app.post("/transcript")
        async def post_transcript(request: TranscriptRequest):
            segments = [
                TranscriptSegment(
                    text=s.text,
                    timestamp=s.timestamp,
                    user_id=s.user_id,
                    display_name=s.display_name,
                    speaker_label=s.speaker_label,
                )
                for s in request.segments
            ]
            runtime.on_transcript(segments)
            return {
                "accepted": len(segments),
                "assistant_state": runtime.pacing.assistant_state.value,
            }

        @self.app.post("/transcript/rows")
        async def post_transcript_rows(request: TranscriptRowsRequest):
            fed = runtime.on_transcript_rows(
                [r.model_dump() for r in request.rows],
                session_id=request.session_id,
            )
            return {
                "received": len(request.rows),
                "classified": fed,
                "assistant_state": runtime.pacing.assistant_state.value,
            }

        @self.app.post("/game-event")
        async def post_game_event(request: GameEventRequest):
            runtime.on_game_event(request.event_type, request.data)
            return {"assistant_state": runtime.pacing.assistant_state.value}

        @self.app.post("/chat")
        async def post_chat(request: ChatRequest):
            cmd = runtime.on_chat_message(
                request.content, timestamp=request.timestamp, is_gm=request.is_gm
            )
            return {
                "command": cmd.type.value if cmd else None,
                "args": cmd.args if cmd else [],
                "assistant_state": runtime.pacing.assistant_state.value,
            }

        @self.app.post("/npc-cache")
        async def post_npc_cache(request: NpcCacheRequest):
            if not request.entries:
                raise HTTPException(status_code=400, detail="NPC cache is empty")
            runtime.install_npc_cache(
                NpcCacheEntry.from_dict(e.model_dump()) for e in request.entries
            )
            return {"installed": len(request.entries)}

        @self.app.post("/scene-index")
        async def post_scene_index(request: SceneIndexRequest):
            runtime.install_scene_index(
                SceneIndexEntry.from_dict(e.model_dump()) for e in request.entries
            )
            return {"installed": len(request.entries)}


def create_app(
    config: Optional[AssistantConfig] = None,
    runtime: Optional[AssistantRuntime] = None,
    start_ticker: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    server = StageCueAPIServer(config=config, runtime=runtime, start_ticker=start_ticker)
    return server.app


def main(argv: Optional[List[str]] = None):
    """Run the API server from command line."""
    import uvicorn

    parser = argparse.ArgumentParser(description="StageCue API Server")
    parser.add_argument("--config", help="YAML/JSON config file")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--state-path", help="Persist pacing state here across restarts")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_dir or None)

    runtime = AssistantRuntime(config, state_path=args.state_path)
    app = create_app(runtime=runtime)

    logger.info(f"StageCue API starting on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
