# tests/test_main.py
from __future__ import annotations

import pytest

import main
from core.reconciliation import ControllerState, DirtySignal
from services.kv_store import MemoryKeyValueStore


def test_build_controller_wires_a_fresh_controller():
    dirty = DirtySignal()
    controller = main.build_controller("c1", kv=MemoryKeyValueStore(), dirty=dirty)
    assert controller.state is ControllerState.IDLE
    assert controller.dirty is dirty
    assert controller.snapshot().plan is None


def test_build_controller_needs_a_client(monkeypatch):
    monkeypatch.setattr(main.settings, "client_id", None)
    with pytest.raises(ValueError):
        main.build_controller(kv=MemoryKeyValueStore())
