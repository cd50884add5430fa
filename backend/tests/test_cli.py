"""
CLI command tests (flask lottery ...).
"""

import pytest

from packtrack.models import LotteryBin, LotteryGame


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestIdentifierCommands:

    def test_upcs(self, runner):
        result = runner.invoke(args=["lottery", "upcs", "0333", "5633005", "3"])
        assert result.exit_code == 0
        assert result.output.split() == ["035633005000", "035633005001", "035633005002"]

    def test_upcs_bad_game_code(self, runner):
        result = runner.invoke(args=["lottery", "upcs", "33", "5633005", "3"])
        assert result.exit_code != 0

    def test_parse_barcode(self, runner):
        result = runner.invoke(args=["lottery", "parse-barcode", "003356330050450000000000"])
        assert result.exit_code == 0
        assert "5633005" in result.output
        assert "serial_position: 045" in result.output

    def test_parse_barcode_wrong_length(self, runner):
        result = runner.invoke(args=["lottery", "parse-barcode", "0033"])
        assert result.exit_code != 0
        assert "24" in result.output


class TestSetupCommands:

    def test_init_db_seeds_bins_once(self, runner, db_session):
        assert runner.invoke(args=["lottery", "init-db", "--bins", "3"]).exit_code == 0
        assert runner.invoke(args=["lottery", "init-db", "--bins", "3"]).exit_code == 0
        assert db_session.query(LotteryBin).count() == 3

    def test_add_game(self, runner, db_session):
        result = runner.invoke(args=[
            "lottery", "add-game", "--code", "0033", "--name", "Lucky 7s",
            "--price-cents", "500", "--tickets-per-pack", "150",
        ])
        assert result.exit_code == 0
        game = db_session.query(LotteryGame).filter_by(code="0033").one()
        assert game.tickets_per_pack == 150

    def test_add_duplicate_game(self, runner, game):
        result = runner.invoke(args=["lottery", "add-game", "--code", "0033", "--name", "Again"])
        assert result.exit_code != 0
        assert "already exists" in result.output
