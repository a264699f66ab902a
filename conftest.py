"""
Pytest configuration file for the edgehttp project.
This file ensures that the edgehttp package can be imported during tests.
"""

import sys
from pathlib import Path

import pytest

# Add the project root directory to the Python path
project_root = Path(__file__).parent.absolute()
sys.path.insert(0, str(project_root))

from tests.helpers import write_certificate  # noqa: E402


@pytest.fixture
def cert_pair(tmp_path):
    """A fresh self-signed certificate and key for 127.0.0.1/localhost."""
    return write_certificate(tmp_path)


@pytest.fixture
def static_root(tmp_path):
    root = tmp_path / "static"
    root.mkdir()
    (root / "index.html").write_text("<html><body>" + "welcome " * 40 + "</body></html>")
    (root / "hello.txt").write_text("hello from disk\n")
    return root
