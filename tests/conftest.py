import os
import tempfile

# keep the package's file logging out of the user's home while testing
os.environ.setdefault("TASKNEST_LOG_DIR", tempfile.mkdtemp(prefix="tasknest-logs-"))

import pytest

from tasknest.data.store import MemoryNodeStore, YamlNodeStore
from tasknest.lifecycle import TaskTreeService

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest.fixture
def store():
    return MemoryNodeStore()


@pytest.fixture
def service(store):
    return TaskTreeService(store)


@pytest.fixture
def yaml_path(tmp_path):
    return tmp_path / "data" / "tasks.yml"


@pytest.fixture
def yaml_service(yaml_path):
    return TaskTreeService(YamlNodeStore(yaml_path))


def build_chain(service, levels, owner=OWNER):
    """Create a root plus nested children; returns nodes from root down."""
    nodes = [service.create_node(owner, None, "L0")]
    for level in range(1, levels):
        nodes.append(service.create_node(owner, nodes[-1].id, f"L{level}"))
    return nodes


@pytest.fixture
def make_chain(service):
    def make(levels, owner=OWNER):
        return build_chain(service, levels, owner)
    return make
