"""
Unit tests for the run_etl entry point exit codes
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from core.exceptions import LoadError
from scripts import run_etl


@pytest.fixture
def patched_runner():
    """Replace engine creation, logging setup and the runner in the script"""
    engine = MagicMock()
    runner = MagicMock()
    runner.run = AsyncMock(return_value=[])

    with patch("scripts.run_etl.setup_logging"), \
         patch("scripts.run_etl.create_engine", return_value=engine) as create_engine, \
         patch("scripts.run_etl.ImportRunner", return_value=runner) as runner_cls:
        runner_cls.engine = engine
        runner_cls.create_engine = create_engine
        runner_cls.instance = runner
        yield runner_cls


class TestMain:
    """Test process exit codes"""

    def test_success_returns_zero(self, patched_runner):
        assert run_etl.main() == 0

        patched_runner.assert_called_once_with(patched_runner.engine)
        patched_runner.instance.run.assert_awaited_once()

    def test_etl_failure_returns_one(self, patched_runner):
        patched_runner.instance.run.side_effect = LoadError("COPY into title_basics failed")

        assert run_etl.main() == 1

        patched_runner.instance.run.assert_awaited_once()

    def test_unexpected_error_propagates(self, patched_runner):
        patched_runner.instance.run.side_effect = KeyError("surprise")

        with pytest.raises(KeyError):
            run_etl.main()
