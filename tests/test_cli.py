"""Tests for the command-line entry point."""

import pytest
from cli import apply_overrides, build_parser, main
from matchnet.config import Config
from matchnet.data import ConfigurationError


def _write_config(tmp_path, matches_csv, covariates_csv):
    path = tmp_path / "config.toml"
    path.write_text(
        "[data]\n"
        f"matches_path = \"{matches_csv.as_posix()}\"\n"
        f"covariates_path = \"{covariates_csv.as_posix()}\"\n"
        f"output_dir = \"{(tmp_path / 'out').as_posix()}\"\n\n"
        "[sampler]\nchains = 2\nwarmup = 10\ndraws = 10\nleapfrog_steps = 3\nmap_steps = 10\n"
    )
    return path


class TestParser:
    def test_fit_overrides(self):
        args = build_parser().parse_args(["fit", "--meeting", "2", "--chains", "1", "--threshold", "0.6"])
        config = apply_overrides(args, Config.default())
        assert config.model.meeting == 2
        assert config.sampler.chains == 1
        assert config.analysis.threshold == 0.6
        assert config.sampler.draws == Config.default().sampler.draws

    def test_invalid_override(self):
        args = build_parser().parse_args(["fit", "--threshold", "1.5"])
        with pytest.raises(ConfigurationError):
            apply_overrides(args, Config.default())


class TestMain:
    def test_adjacency(self, tmp_path, matches_csv, covariates_csv, monkeypatch, capsys):
        config = _write_config(tmp_path, matches_csv, covariates_csv)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "adjacency", "--meeting", "2"])
        main()
        out = capsys.readouterr().out
        assert "2 meeting matrices over 4 teams" in out
        assert "Meeting 2:" in out

    def test_data_status(self, tmp_path, matches_csv, covariates_csv, monkeypatch, capsys):
        config = _write_config(tmp_path, matches_csv, covariates_csv)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "data", "status"])
        main()
        out = capsys.readouterr().out
        assert "Matches: 11" in out
        assert "Pushes:  1" in out

    def test_fit(self, tmp_path, matches_csv, covariates_csv, monkeypatch, capsys):
        config = _write_config(tmp_path, matches_csv, covariates_csv)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "fit"])
        main()
        out = capsys.readouterr().out
        assert "Latent Eigenmodel Fit" in out
        assert "Accuracy" in out
        assert (tmp_path / "out" / "adjacency.png").exists()

    def test_data_error_exits(self, tmp_path, covariates_csv, monkeypatch, capsys):
        bad = tmp_path / "bad.csv"
        bad.write_text("date,team,opponent,margin\n2024-01-01,A,B,\n")
        config = _write_config(tmp_path, bad, covariates_csv)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "adjacency"])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 1
        assert "margin" in capsys.readouterr().err

    def test_covariate_mismatch_exits(self, tmp_path, matches_csv, monkeypatch, capsys):
        cov = tmp_path / "cov.csv"
        cov.write_text("team,ppg\nBills,20\nJets,18\n")
        config = _write_config(tmp_path, matches_csv, cov)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "fit", "--no-plots"])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 1
        assert "no covariates" in capsys.readouterr().err

    @pytest.mark.parametrize("holdout", ["0", "1.5"])
    def test_tune_bad_holdout_exits(self, tmp_path, matches_csv, covariates_csv, monkeypatch, capsys, holdout):
        config = _write_config(tmp_path, matches_csv, covariates_csv)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "tune",
                                         "--trials", "1", "--holdout", holdout])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 1
        assert "Holdout fraction" in capsys.readouterr().err

    def test_fit_marks_are_plain_text(self, tmp_path, matches_csv, covariates_csv, monkeypatch, capsys):
        config = _write_config(tmp_path, matches_csv, covariates_csv)
        monkeypatch.setattr("sys.argv", ["cli.py", "--config", str(config), "fit",
                                         "--threshold", "0", "--no-plots"])
        main()
        out = capsys.readouterr().out
        assert "dyad(s) predicted over" in out
        assert out.isascii()
        assert " hit" in out or " miss" in out
