"""
Pytest configuration for unit tests.

Installs one OpenTelemetry tracer provider with an in-memory exporter for the
whole session, so outbound call spans can be asserted on.
"""

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

_shared_exporter = InMemorySpanExporter()
_shared_provider = TracerProvider()
_shared_provider.add_span_processor(SimpleSpanProcessor(_shared_exporter))

# The global provider can only be set once per process.
trace.set_tracer_provider(_shared_provider)


@pytest.fixture
def shared_span_exporter():
    """The session span exporter, cleared before and after each test."""
    _shared_exporter.clear()
    yield _shared_exporter
    _shared_exporter.clear()
