"""Test doubles for code built on ocstream."""

from .fake_transport import FakeEventSource, FakeTransportFactory, make_global_event

__all__ = ["FakeEventSource", "FakeTransportFactory", "make_global_event"]
