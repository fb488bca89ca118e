import subprocess
from unittest.mock import MagicMock

import pytest

from kubestrap.config import load_config


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout,
                                       stderr=stderr)


@pytest.fixture
def config():
    """The default configuration with a repository set"""
    return load_config(None, environ={
        'GITHUB_REPOSITORY': 'octo/hello-world',
    })


@pytest.fixture
def runner():
    """A command runner which succeeds without output"""
    return MagicMock(return_value=completed())


@pytest.fixture
def k8s():
    return MagicMock()
