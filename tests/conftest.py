import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import certnet`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless CERTNET_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('CERTNET_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set CERTNET_RUN_SLOW=1 to enable'))


@pytest.fixture
def config_manager(monkeypatch):
    """Config manager reset to defaults, with no CERTNET_* variable in the environment."""
    from certnet.config import get_config_manager

    for name in list(os.environ):
        if name.startswith("CERTNET_") and name != "CERTNET_RUN_SLOW":
            monkeypatch.delenv(name, raising=False)

    mgr = get_config_manager()
    mgr.reset()
    yield mgr
    mgr.reset()
