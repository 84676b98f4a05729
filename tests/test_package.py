import importlib

import pytest


@pytest.mark.parametrize(
    "module, opening",
    [
        ("src.codeforge.errors", "Exception types"),
        ("src.codeforge.services.persistence", "Diff statistics"),
        ("src.codeforge.services.providers", "Provider adapters"),
        ("src.codeforge.services.pipeline", "The chat turn pipeline"),
        ("src.codeforge.observability.metrics", "Prometheus metrics"),
        ("src.codeforge.security.auth", "Authentication utilities"),
    ],
)
def test_module_docstrings_are_exposed(module, opening):
    doc = importlib.import_module(module).__doc__
    assert doc and doc.startswith(opening)
