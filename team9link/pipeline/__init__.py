"""Inbound pipeline: debounce, mention gating, routing and reply dispatch."""

from team9link.pipeline.debounce import InboundDebouncer, merge_messages
from team9link.pipeline.dispatch import DispatchPipeline, ReplyDispatcher
from team9link.pipeline.handler import InboundPipeline
from team9link.pipeline.mentions import MentionDecision, MentionGate
from team9link.pipeline.router import Route, Router, resolve_route

__all__ = [
    "DispatchPipeline",
    "InboundDebouncer",
    "InboundPipeline",
    "MentionDecision",
    "MentionGate",
    "ReplyDispatcher",
    "Route",
    "Router",
    "merge_messages",
    "resolve_route",
]
