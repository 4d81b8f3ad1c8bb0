"""
Pytest configuration for the node e2e runner tests.

Puts src/ on sys.path so tests import modules the same way main.py does,
and keeps the SSH public-key injection settings of the calling shell out of
RunnerConfig.from_args().
"""

import os
import sys

import pytest

ROOT_DIR = os.path.dirname(__file__)
SRC_DIR = os.path.join(ROOT_DIR, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


@pytest.fixture(autouse=True)
def _isolate_public_key_env(monkeypatch):
    from config import INJECT_PUBLIC_KEY_ENV, PUBLIC_KEY_FILE_ENV

    monkeypatch.delenv(INJECT_PUBLIC_KEY_ENV, raising=False)
    monkeypatch.delenv(PUBLIC_KEY_FILE_ENV, raising=False)
