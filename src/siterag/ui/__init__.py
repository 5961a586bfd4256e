"""Gradio UI for SiteRAG."""

from .app import SiteRAGClient, build_interface, launch

__all__ = ["SiteRAGClient", "build_interface", "launch"]
