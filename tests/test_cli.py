"""Test suite for the command-line interfaces."""

import numpy as np
import pandas as pd
import pytest
from click.testing import CliRunner

from crosshmm import cli, simulate_cli


@pytest.mark.parametrize("mode", ["genoprob", "viterbi", "est_map"])
def test_cli_npz(mode):
    """Test simulating an .npz bundle and analysing it."""
    runner = CliRunner()
    with runner.isolated_filesystem():
        res = runner.invoke(
            simulate_cli.main,
            ["-c", "f2", "-n", "5", "-m", "4", "--chroms", "1,2", "-o", "sim"],
        )
        assert res.exit_code == 0, res.output
        res = runner.invoke(
            cli.main,
            ["-i", "sim.npz", "--mode", mode, "--step", "10", "--max_iter", "3", "-o", "out"],
        )
        assert res.exit_code == 0, res.output
        suffix = {"genoprob": "genoprob", "viterbi": "viterbi", "est_map": "map"}[mode]
        df = pd.read_csv(f"out.{suffix}.tsv", sep="\t")
        assert set(df["chrom"].astype(str)) == {"1", "2"}
        if mode == "genoprob":
            assert np.allclose(df[["AA", "AB", "BB"]].sum(axis=1), 1.0)
        if mode == "est_map":
            assert df.shape[0] == 8


def test_cli_tsv():
    """Test simulating a genotype table with covariates and analysing it."""
    runner = CliRunner()
    with runner.isolated_filesystem():
        res = runner.invoke(
            simulate_cli.main,
            ["-c", "bc", "-n", "6", "-m", "5", "--x_chrom", "X", "--format", "tsv", "-o", "sim"],
        )
        assert res.exit_code == 0, res.output
        res = runner.invoke(
            cli.main,
            ["-i", "sim.tsv", "--covar", "sim.covar.tsv", "-c", "bc", "--mode", "viterbi", "-o", "out"],
        )
        assert res.exit_code == 0, res.output
        df = pd.read_csv("out.viterbi.tsv", sep="\t")
        assert df.shape == (10, 3 + 6)


def test_cli_tsv_founder_cross():
    """Test that founder-based crosses cannot be written as a genotype table."""
    runner = CliRunner()
    with runner.isolated_filesystem():
        res = runner.invoke(
            simulate_cli.main, ["-c", "riself4", "--format", "tsv", "-o", "sim"]
        )
        assert res.exit_code != 0
