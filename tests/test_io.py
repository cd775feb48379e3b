"""Test suite to make sure that input I/O is correct."""

import numpy as np
import pandas as pd
import pytest

from crosshmm import CrossData, DataReader, GenoSim

# -------- Creating fake test data -------- #
test_df = pd.DataFrame(
    {
        "marker": ["m1", "m2", "m3", "x1", "x2"],
        "chrom": ["1", "1", "1", "X", "X"],
        "pos": [0.0, 20.0, 10.0, 0.0, 5.0],
        "ind1": [1, 2, 0, 1, 2],
        "ind2": [2, 2, 1, 1, 1],
    }
)

test_covar = pd.DataFrame({"id": ["ind2", "ind1"], "is_female": [0, 1]})


def test_read_tsv(tmp_path):
    """Test reading a genotype table and its covariates."""
    p = tmp_path / "x.tsv"
    test_df.to_csv(p, sep="\t", index=None)
    q = tmp_path / "covar.tsv"
    test_covar.to_csv(q, sep="\t", index=None)
    data = DataReader(crosstype="bc").read_data(str(p), covar_fp=str(q))
    assert data.crosstype == "bc"
    assert data.chrom_names == ["1", "X"]
    assert data.n_ind == 2
    assert data.ind_ids == ["ind1", "ind2"]
    # markers are sorted by position
    assert np.all(data.gmap["1"] == [0.0, 10.0, 20.0])
    assert data.marker_names["1"] == ["m1", "m3", "m2"]
    assert np.all(data.geno["1"][0] == [1, 0, 2])
    assert data.is_x_chr == {"1": False, "X": True}
    assert np.all(data.is_female == [True, False])
    assert data.cross_info.shape == (2, 0)


def test_read_tsv_needs_crosstype(tmp_path):
    """Test that text input requires a cross type."""
    p = tmp_path / "x.tsv"
    test_df.to_csv(p, sep="\t", index=None)
    with pytest.raises(ValueError):
        DataReader().read_data(str(p))


def test_read_tsv_missing_column(tmp_path):
    """Test that a table without positions is rejected."""
    p = tmp_path / "x.tsv"
    test_df.drop(columns=["pos"]).to_csv(p, sep="\t", index=None)
    with pytest.raises(ValueError, match="pos"):
        DataReader(crosstype="bc").read_data(str(p))


@pytest.mark.parametrize("crosstype", ["bc", "riself8", "f2"])
def test_read_npz(crosstype, tmp_path):
    """Test reading a simulated .npz bundle."""
    res = GenoSim(crosstype=crosstype).sim_cross(
        n_ind=7, chrom_names=("1", "2"), m=6, seed=3
    )
    p = tmp_path / "x.npz"
    np.savez(p, **res)
    data = DataReader().read_data(str(p))
    assert data.crosstype == crosstype
    assert data.chrom_names == ["1", "2"]
    assert data.n_ind == 7
    for c in data.chrom_names:
        assert np.all(data.geno[c] == res[f"geno_{c}"])
        assert np.all(data.gmap[c] == res[f"gmap_{c}"])
    assert np.all(data.cross_info == res["cross_info"])
    if crosstype == "riself8":
        assert data.founder_geno["1"].shape == (8, 6)
    else:
        assert data.founder_geno == {}


def test_read_npz_missing_field(tmp_path):
    """Test that an incomplete .npz bundle is rejected."""
    res = GenoSim(crosstype="bc").sim_cross(n_ind=3, m=4, seed=4)
    del res["gmap_1"]
    p = tmp_path / "x.npz"
    np.savez(p, **res)
    with pytest.raises(ValueError, match="gmap_1"):
        DataReader().read_data(str(p))


def test_with_pseudomarkers():
    """Test that pseudomarkers are inserted as missing genotypes."""
    data = CrossData(
        "riself4",
        {"1": np.array([[1, 3], [3, 1]])},
        {"1": np.array([0.0, 2.5])},
        cross_info=np.array([[1, 2, 3, 4], [4, 3, 2, 1]]),
        founder_geno={"1": np.array([[1, 1], [1, 3], [3, 1], [3, 3]])},
    )
    data_pm = data.with_pseudomarkers(step=1.0)
    assert np.allclose(data_pm.gmap["1"], [0.0, 1.0, 2.0, 2.5])
    assert np.all(data_pm.geno["1"] == [[1, 0, 0, 3], [3, 0, 0, 1]])
    assert np.all(data_pm.founder_geno["1"][:, [1, 2]] == 0)
    assert data_pm.marker_names["1"][1] == "c1.00"
    assert data_pm.cross_info.shape == (2, 4)


def test_subset():
    """Test subsetting individuals and chromosomes."""
    data = CrossData(
        "bc",
        {"1": np.array([[1, 2], [2, 2], [1, 1]]), "2": np.array([[1], [2], [1]])},
        {"1": np.array([0.0, 5.0]), "2": np.array([0.0])},
        is_female=[True, False, True],
    )
    sub = data.subset(chrom_names=["2"], ind=[0, 2])
    assert sub.chrom_names == ["2"]
    assert sub.n_ind == 2
    assert np.all(sub.is_female == [True, True])
    assert sub.ind_ids == ["ind0", "ind2"]
    with pytest.raises(ValueError):
        data.subset(chrom_names=["3"])
