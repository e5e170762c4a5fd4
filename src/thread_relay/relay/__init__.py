"""Relay of formatted transcripts into the destination page."""

from .destination import (
    DestinationRelay,
    InputInjector,
    ModelDiscovery,
    ReadinessProbe,
    classify_model_option,
    parse_readiness_payload,
)
from .prompt import format_transcript, thread_overview

__all__ = [
    "DestinationRelay",
    "InputInjector",
    "ModelDiscovery",
    "ReadinessProbe",
    "classify_model_option",
    "format_transcript",
    "parse_readiness_payload",
    "thread_overview",
]
