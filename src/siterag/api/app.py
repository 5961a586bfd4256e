"""FastAPI application exposing SiteRAG services."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator, AsyncIterator, Sequence
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from siterag.api.schemas import (
    ChatRequest,
    ChatResponse,
    ChunkSummary,
    ContextResponse,
    ConversationCreateRequest,
    ConversationResponse,
    DocumentSummary,
    DocumentUploadResponse,
    MessageListResponse,
    MessageModel,
    TaskProjectLinkModel,
)
from siterag.config import Settings, get_settings
from siterag.context import AssemblerConfig, ContextAssembler, ContextCache
from siterag.ingestion import DocumentNormalizer, LangChainDocumentNormalizer, NormalizerConfig
from siterag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from siterag.models import Conversation, StoredDocument, TaskProjectLink
from siterag.services import ChatService, GenerationBackend, GenerationError, build_generator
from siterag.sources import AsanaTaskProvider, SlackHistoryProvider
from siterag.storage import ConversationNotFoundError, ConversationStore, InMemoryConversationStore
from siterag.streaming import SSE_HEADERS, SSE_MEDIA_TYPE, PacingConfig

ALLOWED_EXTENSIONS = {".pdf", ".xlsx", ".txt", ".rtf", ".docx"}


@dataclass(frozen=True)
class AppDependencies:
    store: ConversationStore
    normalizer: DocumentNormalizer
    cache: ContextCache
    assembler: ContextAssembler
    generator: GenerationBackend
    chat_service: ChatService


def _build_dependencies(settings: Settings) -> AppDependencies:
    store = InMemoryConversationStore()
    normalizer = LangChainDocumentNormalizer(
        NormalizerConfig(
            section_size=settings.text_section_size,
            single_chunk_max_lines=settings.text_single_chunk_max_lines,
            currency_symbol=settings.currency_symbol,
        ),
    )
    cache = ContextCache(normalizer, store)
    assembler = ContextAssembler(
        cache,
        SlackHistoryProvider(
            settings.slack_bot_token,
            base_url=settings.slack_api_url,
            limit=settings.slack_history_limit,
        ),
        AsanaTaskProvider(settings.asana_access_token, base_url=settings.asana_api_url),
        AssemblerConfig(
            include_source_details=settings.include_source_details,
            include_user_in_source=settings.include_user_in_source,
            include_date_in_source=settings.include_date_in_source,
            include_completed_tasks=settings.asana_include_completed,
            response_template=settings.response_template,
        ),
    )
    generator = build_generator(settings)
    chat_service = ChatService(
        store,
        assembler,
        generator,
        model=settings.generator_model,
        attribution_required=settings.attribution_required,
        pacing=PacingConfig(
            large_token_chars=settings.stream_large_token_chars,
            words_per_group=settings.stream_words_per_group,
            interval_seconds=settings.stream_pacing_interval_seconds,
            queue_size=settings.stream_queue_size,
        ),
    )
    return AppDependencies(
        store=store,
        normalizer=normalizer,
        cache=cache,
        assembler=assembler,
        generator=generator,
        chat_service=chat_service,
    )


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="SiteRAG API", version="0.1.0")
    app.state.dependencies = deps

    # Optional CORS
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    # Security dependencies
    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    class RateLimiter:
        def __init__(self, requests: int, window_seconds: int) -> None:
            self.requests = requests
            self.window = window_seconds
            self._buckets: dict[str, list[float]] = {}

        def __call__(self, request: Request) -> None:
            client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
            key = f"{client_ip}:{request.url.path}"
            now = time.time()
            bucket = self._buckets.setdefault(key, [])
            # Drop old entries
            cutoff = now - self.window
            while bucket and bucket[0] < cutoff:
                bucket.pop(0)
            if len(bucket) >= self.requests:
                raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
            bucket.append(now)

    rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    @app.exception_handler(ConversationNotFoundError)
    async def handle_missing_conversation(request: Request, exc: ConversationNotFoundError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc), "correlation_id": correlation_id},
        )

    @app.exception_handler(GenerationError)
    async def handle_generation_error(request: Request, exc: GenerationError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("generation.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": "Error generating response", "correlation_id": correlation_id},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> ConversationStore:
        return dep.store

    def get_cache(dep: AppDependencies = Depends(get_dependencies)) -> ContextCache:
        return dep.cache

    def get_chat_service(dep: AppDependencies = Depends(get_dependencies)) -> ChatService:
        return dep.chat_service

    @app.post("/conversations", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
    async def create_conversation(
        payload: ConversationCreateRequest,
        store: ConversationStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> ConversationResponse:
        conversation = Conversation(
            conversation_id=uuid4().hex,
            name=payload.name.strip(),
            system_prompt=payload.system_prompt or None,
            output_format=payload.output_format or None,
            channel_id=payload.channel_id or None,
            task_links=tuple(
                TaskProjectLink(
                    project_id=link.project_id,
                    project_name=link.project_name,
                    project_type=link.project_type,
                )
                for link in payload.task_links
            ),
        )
        await store.save_conversation(conversation)
        logger.info("conversation.created", conversation_id=conversation.conversation_id)
        return _conversation_response(conversation)

    @app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
    async def get_conversation(
        conversation_id: str,
        store: ConversationStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> ConversationResponse:
        return _conversation_response(await store.get_conversation(conversation_id))

    @app.post(
        "/conversations/{conversation_id}/documents",
        response_model=DocumentUploadResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def upload_documents(
        conversation_id: str,
        files: Sequence[UploadFile] = File(...),
        store: ConversationStore = Depends(get_store),
        cache: ContextCache = Depends(get_cache),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> DocumentUploadResponse:
        await store.get_conversation(conversation_id)
        if not files:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
        if len(files) > settings.max_files:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Too many files")

        target_dir = Path(settings.upload_dir) / conversation_id
        target_dir.mkdir(parents=True, exist_ok=True)
        allowed = set(settings.allowed_extensions_tuple) or ALLOWED_EXTENSIONS
        summaries: list[DocumentSummary] = []
        for upload in files:
            filename = Path(upload.filename or f"upload-{uuid4().hex}").name
            suffix = Path(filename).suffix.lower()
            if suffix not in allowed:
                await upload.close()
                raise HTTPException(
                    status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                    detail=f"Unsupported file type: {suffix or 'unknown'}",
                )
            document_id = uuid4().hex
            destination = target_dir / f"{document_id}{suffix}"
            # Stream copy to avoid loading entire file into memory
            bytes_written = 0
            with destination.open("wb") as out_f:
                while True:
                    chunk = await upload.read(1024 * 1024)
                    if not chunk:
                        break
                    out_f.write(chunk)
                    bytes_written += len(chunk)
                    if bytes_written > settings.max_upload_size_mb * 1024 * 1024:
                        break
            await upload.close()
            if bytes_written > settings.max_upload_size_mb * 1024 * 1024:
                destination.unlink(missing_ok=True)
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
                )
            if bytes_written == 0:
                destination.unlink(missing_ok=True)
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
            media_type = upload.content_type or ""
            document = await store.add_document(
                StoredDocument(
                    document_id=document_id,
                    conversation_id=conversation_id,
                    path=str(destination),
                    media_type=media_type,
                    original_name=filename,
                ),
            )
            summaries.append(
                DocumentSummary(
                    document_id=document.document_id,
                    original_name=document.original_name,
                    media_type=document.media_type,
                    size_bytes=bytes_written,
                ),
            )
            cache.invalidate(conversation_id)
        logger.info("documents.uploaded", conversation_id=conversation_id, count=len(summaries))
        return DocumentUploadResponse(conversation_id=conversation_id, documents=summaries)

    @app.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_document(
        document_id: str,
        store: ConversationStore = Depends(get_store),
        cache: ContextCache = Depends(get_cache),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        removed = await store.remove_document(document_id)
        if removed is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Document not found: {document_id}")
        Path(removed.path).unlink(missing_ok=True)
        # the owning conversation is not tracked per entry, so every entry goes
        cache.invalidate_all()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/conversations/{conversation_id}/context", response_model=ContextResponse)
    async def conversation_context(
        conversation_id: str,
        store: ConversationStore = Depends(get_store),
        cache: ContextCache = Depends(get_cache),
        _auth: None = Depends(require_api_key),
    ) -> ContextResponse:
        await store.get_conversation(conversation_id)
        chunks = await cache.get(conversation_id)
        entry = cache.peek(conversation_id)
        return ContextResponse(
            conversation_id=conversation_id,
            refreshed_at=entry.refreshed_at if entry else None,
            chunks=[
                ChunkSummary(source=chunk.source, label=chunk.label, diagnostic=chunk.diagnostic, chars=len(chunk.text))
                for chunk in chunks
            ],
        )

    @app.post("/conversations/{conversation_id}/chat", response_model=ChatResponse)
    async def chat(
        conversation_id: str,
        payload: ChatRequest,
        service: ChatService = Depends(get_chat_service),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> ChatResponse:
        reply = await service.answer(conversation_id, payload.message)
        return ChatResponse(
            message_id=reply.message_id,
            answer=reply.answer.visible_text,
            citation=reply.answer.citation,
            latency_ms=reply.latency_ms,
        )

    @app.post("/conversations/{conversation_id}/stream")
    async def chat_stream(
        request: Request,
        conversation_id: str,
        payload: ChatRequest,
        service: ChatService = Depends(get_chat_service),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> Response:
        session = await service.open_stream(conversation_id, payload.message)
        # failures before the first token still get a plain error status
        await session.prime()
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return StreamingResponse(
            _bound_frames(session.frames(), correlation_id),
            media_type=SSE_MEDIA_TYPE,
            headers=dict(SSE_HEADERS),
        )

    @app.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
    async def list_messages(
        conversation_id: str,
        store: ConversationStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> MessageListResponse:
        messages = await store.list_messages(conversation_id)
        return MessageListResponse(
            conversation_id=conversation_id,
            messages=[
                MessageModel(
                    message_id=message.message_id,
                    author_kind=message.author_kind,
                    text=message.text,
                    citation=message.citation,
                    created_at=message.created_at,
                )
                for message in messages
            ],
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from siterag import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app


async def _bound_frames(frames: AsyncGenerator[str, None], correlation_id: str) -> AsyncIterator[str]:
    # the middleware clears the correlation id before the body is streamed
    bind_correlation_id(correlation_id)
    try:
        async for frame in frames:
            yield frame
    finally:
        await frames.aclose()
        clear_correlation_id()


def _conversation_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        conversation_id=conversation.conversation_id,
        name=conversation.name,
        system_prompt=conversation.system_prompt,
        output_format=conversation.output_format,
        channel_id=conversation.channel_id,
        task_links=[
            TaskProjectLinkModel(
                project_id=link.project_id,
                project_name=link.project_name,
                project_type=link.project_type,
            )
            for link in conversation.task_links
        ],
    )


app = create_app()
