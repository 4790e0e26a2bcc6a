"""Smoke tests for the `run.py` demo."""

from __future__ import annotations

import sys

import pytest

import run
from galwind.errors import WindFeedbackError

SMALL = ["--gas", "400", "--dm", "400", "--box", "8", "--steps", "2"]


@pytest.mark.parametrize("model", ["ofjt10,decouple", "vs08", "sh03"])
def test_demo_runs(monkeypatch, model):
    monkeypatch.setattr(sys, "argv", ["run.py", "--model", model, "--stars", "4", *SMALL])
    run.main()


def test_demo_without_new_stars_is_an_error(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["run.py", "--stars", "0", *SMALL])
    with pytest.raises(WindFeedbackError, match="no feedback event ran"):
        run.main()
