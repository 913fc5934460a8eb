from pathlib import Path

import pytest

from .relying_party import FlaskTransport, create_relying_party_app
from .soft_authenticator import SoftwareAuthenticator


def pytest_addoption(parser):
    parser.addoption(
        "--run-device-tests",
        action="store_true",
        help="Include the hardware-in-the-loop tests under tests/device.",
    )


def pytest_ignore_collect(collection_path, config):
    """Skip tests that need a physical authenticator unless explicitly requested."""

    if config.getoption("--run-device-tests"):
        return None

    try:
        path_obj = Path(str(collection_path))
    except TypeError:
        return None

    parts = path_obj.parts
    try:
        tests_index = parts.index("tests")
    except ValueError:
        return None

    if tests_index + 1 < len(parts) and parts[tests_index + 1] == "device":
        return True
    return None


@pytest.fixture
def relying_party_app():
    return create_relying_party_app()


@pytest.fixture
def flask_transport(relying_party_app):
    return FlaskTransport(relying_party_app)


@pytest.fixture
def authenticator():
    return SoftwareAuthenticator()
