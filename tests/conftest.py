"""Shared pytest configuration and fixtures for the camfeature test suite."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from camfeature.camera.capture.frame import PixelSurface  # noqa: E402
from camfeature.camera.capture.session import DeviceClaims  # noqa: E402
from camfeature.camera.hardware.simulated import SimulatedCameraBackend  # noqa: E402


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring physical hardware"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require physical hardware",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def backend() -> SimulatedCameraBackend:
    """Simulated camera with a fast preview so tests see frames quickly."""
    return SimulatedCameraBackend(
        ("0",),
        output_sizes=[(1920, 1080), (1280, 720), (640, 480)],
        preview_fps=60.0,
    )


@pytest.fixture
def claims() -> DeviceClaims:
    """Isolated claim registry so tests never share the process-wide one."""
    return DeviceClaims()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def random_surface(rng):
    def _make(width: int = 37, height: int = 23) -> PixelSurface:
        pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
        return PixelSurface(pixels)

    return _make


@pytest.fixture
def wait_until():
    """Poll ``predicate`` on the running loop until it holds or time runs out."""
    import asyncio

    async def _wait(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(interval)

    return _wait
