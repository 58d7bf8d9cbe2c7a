"""Unit tests for the maintenance CLI."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.pipeline.cli import build_parser, main
from src.pipeline.schemas import SweepResult


@pytest.mark.unit
class TestCli:
    def test_parser(self) -> None:
        args = build_parser().parse_args(["sweep", "--stale-after-minutes", "30", "--dry-run"])

        assert args.command == "sweep"
        assert args.stale_after_minutes == 30
        assert args.dry_run is True

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.asyncio
    async def test_sweep_prints_report(self, capsys: pytest.CaptureFixture[str]) -> None:
        orchestrator = MagicMock()
        orchestrator.sweep_stale_requests = AsyncMock(
            return_value=SweepResult(
                stale_rows=2, removed=2, refunded=1, credits_refunded=Decimal("5")
            )
        )

        with (
            patch("src.pipeline.cli.get_service_clients", return_value=(MagicMock(), MagicMock())),
            patch("src.pipeline.cli.build_orchestrator", return_value=orchestrator),
        ):
            exit_code = await main(["sweep", "--stale-after-minutes", "30"])

        assert exit_code == 0
        orchestrator.sweep_stale_requests.assert_awaited_once_with(
            stale_after_minutes=30, dry_run=False
        )
        output = capsys.readouterr().out
        assert "Stale rows found: 2" in output
        assert "Credits refunded: 5" in output

    @pytest.mark.asyncio
    async def test_sweep_failure_exit_code(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch(
            "src.pipeline.cli.get_service_clients",
            side_effect=RuntimeError("no database"),
        ):
            exit_code = await main(["sweep"])

        assert exit_code == 1
        assert "Sweep failed: no database" in capsys.readouterr().out
