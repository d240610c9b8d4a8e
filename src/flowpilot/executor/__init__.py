"""Executor module - Browser session and step executors."""

from .browser import BrowserSession
from .reasoning import ClaudeReasoningExecutor
from .snippet import PlaywrightSnippetExecutor, compile_snippet

__all__ = [
    "BrowserSession",
    "ClaudeReasoningExecutor",
    "PlaywrightSnippetExecutor",
    "compile_snippet",
]
