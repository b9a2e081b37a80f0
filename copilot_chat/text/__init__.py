"""Copilot 响应文本规范化工具。"""

from .normalizer import build_source_appendix, format_response_text, rewrite_citations, sanitize

__all__ = ["build_source_appendix", "format_response_text", "rewrite_citations", "sanitize"]
