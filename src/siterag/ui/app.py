"""Gradio-based chat interface for SiteRAG."""

from __future__ import annotations

import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterable, Sequence

import gradio as gr
import httpx

from siterag.api.schemas import ConversationResponse, DocumentUploadResponse, MessageListResponse
from siterag.streaming import CompleteEvent, ContentEvent, ErrorEvent, StreamClient, StreamClientError

DEFAULT_API_URL = os.getenv("SITERAG_API_URL", "http://localhost:8000")


class APIError(RuntimeError):
    """Raised when communication with the SiteRAG API fails."""


@dataclass
class SiteRAGClient:
    """HTTPX-based client for the non-streaming SiteRAG endpoints."""

    base_url: str = DEFAULT_API_URL
    timeout: float = 30.0

    def __post_init__(self) -> None:
        self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def create_conversation(
        self,
        name: str,
        *,
        channel_id: str | None = None,
        api_key: str | None = None,
    ) -> ConversationResponse:
        payload: dict[str, object] = {"name": name}
        if channel_id:
            payload["channel_id"] = channel_id
        response = self._client.post("/conversations", json=payload, headers=_headers(api_key))
        _raise_for_status(response, "Create conversation")
        return ConversationResponse.model_validate(response.json())

    def upload_documents(
        self,
        conversation_id: str,
        paths: Sequence[Path],
        *,
        api_key: str | None = None,
    ) -> DocumentUploadResponse:
        files: list[tuple[str, tuple[str, bytes, str]]] = []
        for path in paths:
            mime, _ = mimetypes.guess_type(path.name)
            files.append(("files", (path.name, path.read_bytes(), mime or "application/octet-stream")))
        response = self._client.post(
            f"/conversations/{conversation_id}/documents",
            files=files,
            headers=_headers(api_key),
        )
        _raise_for_status(response, "Upload")
        return DocumentUploadResponse.model_validate(response.json())

    def messages(self, conversation_id: str, *, api_key: str | None = None) -> MessageListResponse:
        response = self._client.get(f"/conversations/{conversation_id}/messages", headers=_headers(api_key))
        _raise_for_status(response, "Messages")
        return MessageListResponse.model_validate(response.json())

    def close(self) -> None:
        self._client.close()


def _headers(api_key: str | None) -> dict[str, str] | None:
    return {"X-API-Key": api_key} if api_key else None


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.status_code >= 400:
        cid = response.headers.get("X-Correlation-ID", "-")
        raise APIError(f"{action} failed ({response.status_code}) [cid={cid}]: {response.text}")


def _normalize_paths(files: Iterable[object]) -> list[Path]:
    normalized: list[Path] = []
    for file in files or []:
        if isinstance(file, Path):
            normalized.append(file)
        elif isinstance(file, str):
            normalized.append(Path(file))
        elif hasattr(file, "name"):
            normalized.append(Path(getattr(file, "name")))
    return normalized


def create_conversation_handler(client: SiteRAGClient):
    def handle_create(name: str, channel_id: str | None = None, api_key: str | None = None) -> tuple[str, str]:
        if not (name or "").strip():
            return "", "⚠️ Enter a project name."
        try:
            conversation = client.create_conversation(
                name.strip(),
                channel_id=(channel_id or "").strip() or None,
                api_key=api_key or None,
            )
        except APIError as exc:
            return "", f"⚠️ {exc}"
        return conversation.conversation_id, f"✅ Conversation created for {conversation.name}"

    return handle_create


def create_upload_handler(client: SiteRAGClient):
    def handle_upload(files: list[object], conversation_id: str | None = None, api_key: str | None = None) -> str:
        if not (conversation_id or "").strip():
            return "⚠️ Create a conversation first."
        paths = _normalize_paths(files)
        if not paths:
            return "⚠️ Please choose PDF, Excel, RTF, Word or text files to upload."
        try:
            response = client.upload_documents(conversation_id.strip(), paths, api_key=api_key or None)
        except APIError as exc:
            return f"⚠️ Upload failed: {exc}"
        summary = [f"{doc.original_name} ({doc.size_bytes} bytes)" for doc in response.documents]
        return "✅ Uploaded documents:\n" + "\n".join(summary)

    return handle_upload


def create_chat_handler(client: SiteRAGClient, base_url: str):
    async def handle_chat(
        message: str,
        history: list,  # noqa: ARG001 - history handled by Gradio
        conversation_id: str | None = None,
        api_key: str | None = None,
    ) -> AsyncIterator[str]:
        if not message.strip():
            yield "⚠️ Enter a question."
            return
        if not (conversation_id or "").strip():
            yield "⚠️ Create a conversation first."
            return
        cid = conversation_id.strip()
        text = ""
        async with StreamClient(base_url, api_key=api_key or None) as stream:
            try:
                async for event in stream.events(cid, message):
                    if isinstance(event, ContentEvent):
                        text += event.text
                        yield text
                    elif isinstance(event, ErrorEvent):
                        yield f"{text}\n\n⚠️ {event.reason}"
                        return
                    elif isinstance(event, CompleteEvent):
                        yield text + _citation_footer(client, cid, event.message_id, api_key)
            except (httpx.HTTPError, StreamClientError) as exc:
                yield f"⚠️ {exc}"

    return handle_chat


def _citation_footer(client: SiteRAGClient, conversation_id: str, message_id: str | None, api_key: str | None) -> str:
    if not message_id:
        return ""
    try:
        messages = client.messages(conversation_id, api_key=api_key or None).messages
    except APIError:
        return ""
    for stored in messages:
        if stored.message_id == message_id and stored.citation:
            return f"\n\nSource: {stored.citation}"
    return ""


def build_interface(base_url: str | None = None, client: SiteRAGClient | None = None) -> gr.Blocks:
    url = base_url or DEFAULT_API_URL
    api_client = client or SiteRAGClient(base_url=url)
    handle_create = create_conversation_handler(api_client)
    handle_upload = create_upload_handler(api_client)
    handle_chat = create_chat_handler(api_client, url)

    with gr.Blocks(title="SiteRAG Chat") as demo:
        gr.Markdown("## SiteRAG Project Assistant")
        with gr.Row():
            with gr.Column(scale=1):
                name_box = gr.Textbox(label="Project name")
                channel_box = gr.Textbox(label="Slack channel id (optional)")
                api_key_box = gr.Textbox(label="API Key (optional)", type="password")
                create_button = gr.Button("Create Conversation")
                conversation_box = gr.Textbox(label="Conversation id")
                create_status = gr.Markdown("")
                upload_input = gr.File(
                    label="Upload documents",
                    file_count="multiple",
                    file_types=[".pdf", ".xlsx", ".txt", ".rtf", ".docx"],
                )
                upload_status = gr.Markdown("Ready to upload documents.")
                upload_button = gr.Button("Upload Documents", variant="primary")
            with gr.Column(scale=2):
                gr.ChatInterface(
                    fn=handle_chat,
                    additional_inputs=[conversation_box, api_key_box],
                    chatbot=gr.Chatbot(height=420),
                    textbox=gr.Textbox(placeholder="Ask about budget, schedule or tasks..."),
                )
        create_button.click(
            fn=handle_create,
            inputs=[name_box, channel_box, api_key_box],
            outputs=[conversation_box, create_status],
        )
        upload_button.click(
            fn=handle_upload,
            inputs=[upload_input, conversation_box, api_key_box],
            outputs=upload_status,
        )
        gr.Markdown("Tip: set `SITERAG_API_URL` before launching to point the UI at a remote backend.")

    return demo


def launch(*, base_url: str | None = None, share: bool = False) -> None:
    """Launch the Gradio interface."""

    demo = build_interface(base_url=base_url)
    demo.launch(share=share)


if __name__ == "__main__":
    launch()
