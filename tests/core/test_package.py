"""Package-wide checks for ``siteagents``."""

from __future__ import annotations

import importlib
import pkgutil

import pytest

import siteagents

MODULES = sorted(m.name for m in pkgutil.walk_packages(siteagents.__path__, prefix="siteagents."))


@pytest.mark.parametrize("name", ["siteagents", *MODULES])
def test_module_has_docstring(name):
    module = importlib.import_module(name)
    assert module.__doc__ and module.__doc__.strip(), f"{name} has no module docstring"
