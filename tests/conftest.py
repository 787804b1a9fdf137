import pytest

from compat_bench.backend.devices.fake import FakeDevice
from compat_bench.interface import CompatRunner
from ut_checks import FailingCollector, MemoryCollector


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def collector():
    return MemoryCollector()


@pytest.fixture
def failing_collector():
    return FailingCollector(failures=1)


@pytest.fixture
def runner(tmp_path):
    return CompatRunner(result_dir=tmp_path)
