"""Testing module for the cross-type models."""

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from scipy.optimize import minimize_scalar
from utils import CROSS_CONTEXTS

from crosshmm import get_crosstype, list_crosstypes
from crosshmm.crosses import decode_pair, encode_pair

crosstypes = list(CROSS_CONTEXTS.keys())


@pytest.mark.parametrize("crosstype", crosstypes)
def test_init_sums_to_one(crosstype):
    """Test that initial probabilities sum to one in every context."""
    cross = get_crosstype(crosstype)
    for is_x_chr, is_female, cross_info in CROSS_CONTEXTS[crosstype]:
        states = cross.possible_genotypes(is_x_chr, is_female, cross_info)
        init = cross.init_vector(states, is_x_chr, is_female, cross_info)
        assert np.isclose(np.sum(np.exp(init)), 1.0)


@pytest.mark.parametrize("crosstype", crosstypes)
@given(r=st.floats(min_value=0.0, max_value=0.5, exclude_max=True, allow_nan=False))
@settings(max_examples=20, deadline=None)
def test_step_rows_sum_to_one(crosstype, r):
    """Test that transition probabilities from each state sum to one."""
    cross = get_crosstype(crosstype)
    for is_x_chr, is_female, cross_info in CROSS_CONTEXTS[crosstype]:
        states = cross.possible_genotypes(is_x_chr, is_female, cross_info)
        step = cross.step_matrix(r, states, is_x_chr, is_female, cross_info)
        assert np.allclose(np.sum(np.exp(step), axis=1), 1.0)


@pytest.mark.parametrize("crosstype", ["f2", "ail", "do", "genail3"])
@given(r=st.floats(min_value=1e-4, max_value=0.49, allow_nan=False))
@settings(max_examples=10, deadline=None)
def test_step_matrix_matches_step_prob(crosstype, r):
    """Test the transition matrix against the scalar transition probabilities."""
    cross = get_crosstype(crosstype)
    is_x_chr, is_female, cross_info = CROSS_CONTEXTS[crosstype][-1]
    states = cross.possible_genotypes(is_x_chr, is_female, cross_info)
    step = cross.step_matrix(r, states, is_x_chr, is_female, cross_info)
    for i, gl in enumerate(states):
        for j, gr in enumerate(states):
            assert np.isclose(
                step[i, j],
                cross.step_prob(gl, gr, r, is_x_chr, is_female, cross_info),
            )


@pytest.mark.parametrize("crosstype", ["bc", "f2", "riself", "risib", "dh", "haploid"])
@given(e=st.floats(min_value=1e-6, max_value=0.2, allow_nan=False))
@settings(max_examples=10, deadline=None)
def test_emission_full_calls_sum_to_one(crosstype, e):
    """Test that the fully-informative calls form a distribution."""
    cross = get_crosstype(crosstype)
    calls = [g for g in cross.observed_codes if g in (1, 2, 3)]
    for is_x_chr, is_female, cross_info in CROSS_CONTEXTS[crosstype]:
        for g in cross.possible_genotypes(is_x_chr, is_female, cross_info):
            p = [
                np.exp(cross.emit_prob(o, g, e, None, is_x_chr, is_female, cross_info))
                for o in calls
            ]
            assert np.isclose(np.sum(p), 1.0)


@pytest.mark.parametrize("crosstype", crosstypes)
def test_missing_is_uninformative(crosstype):
    """Test that a missing genotype has log-emission zero."""
    cross = get_crosstype(crosstype)
    founder_geno = np.array([1, 3] * 8)[: cross.n_founders]
    for is_x_chr, is_female, cross_info in CROSS_CONTEXTS[crosstype]:
        for g in cross.possible_genotypes(is_x_chr, is_female, cross_info):
            assert (
                cross.emit_prob(0, g, 0.01, founder_geno, is_x_chr, is_female, cross_info)
                == 0.0
            )


@pytest.mark.parametrize("crosstype", crosstypes)
def test_geno_names(crosstype):
    """Test that there is one name per genotype code."""
    cross = get_crosstype(crosstype)
    for is_x_chr in [False, True]:
        names = cross.geno_names(None, is_x_chr and cross.handles_x_chr)
        assert len(names) == cross.n_genotypes(is_x_chr and cross.handles_x_chr)
        assert len(set(names)) == len(names)


def test_geno_names_values():
    """Test a few genotype labels."""
    assert get_crosstype("bc").geno_names("AB", True) == ["AA", "AB", "AY", "BY"]
    assert get_crosstype("f2").geno_names("BR") == ["BB", "BR", "RR"]
    assert get_crosstype("do").geno_names()[:4] == ["AA", "AB", "BB", "AC"]
    assert get_crosstype("haploid").geno_names() == ["A", "B"]


def test_encode_decode_pair():
    """Test the founder-pair genotype encoding."""
    assert encode_pair(0, 0) == 1
    assert encode_pair(0, 1) == 2
    assert encode_pair(1, 1) == 3
    assert encode_pair(2, 0) == 4
    assert encode_pair(7, 7) == 36
    for g in range(1, 37):
        i, j = decode_pair(g)
        assert i <= j
        assert encode_pair(i, j) == g


def test_registry():
    """Test the cross type registry."""
    assert get_crosstype("riself8").n_founders == 8
    assert get_crosstype("genril5").n_founders == 5
    assert get_crosstype("genail12").n_crossinfo == 13
    assert get_crosstype("do").n_genotypes() == 36
    assert get_crosstype("riself8").n_alleles() == 8
    assert get_crosstype("bc").n_alleles() == 2
    assert get_crosstype("do").n_alleles() == 8
    assert "bc" in list_crosstypes()
    cross = get_crosstype("bc")
    assert get_crosstype(cross) is cross
    with pytest.raises(ValueError):
        get_crosstype("not_a_cross")
    with pytest.raises(ValueError):
        get_crosstype("genril1")


def test_crossinfo_wrong_length():
    """Test that an eight-way cross_info of length 7 is rejected."""
    cross = get_crosstype("riself8")
    with pytest.raises(ValueError, match="cross_info"):
        cross.check_crossinfo(np.array([[1, 2, 3, 4, 5, 6, 7]]))


@pytest.mark.parametrize(
    "crosstype,cross_info",
    [
        ("riself8", [[1, 2, 3, 4, 5, 6, 7, 7]]),
        ("riself4", [[0, 1, 2, 3]]),
        ("risib4", [[1, 2, 3, -1]]),
        ("f2", [[2]]),
        ("risib", [[-1]]),
        ("genril3", [[0, 0, 0]]),
        ("do", [[0]]),
        ("ail", [[1]]),
        ("genail3", [[10, 1, -1, 1]]),
        ("bc", [[0]]),
    ],
)
def test_crossinfo_invalid(crosstype, cross_info):
    """Test that invalid cross_info is reported, not silently accepted."""
    cross = get_crosstype(crosstype)
    with pytest.raises(ValueError):
        cross.check_crossinfo(np.array(cross_info), any_x_chr=True)


@pytest.mark.parametrize(
    "crosstype,cross_info",
    [
        ("riself8", [[5, 2, 8, 1, 3, 7, 4, 6], [1, 2, 3, 4, 5, 6, 7, 8]]),
        ("f2", [[0], [1]]),
        ("f2", np.zeros(shape=(2, 0), dtype=int)),
        ("do", [[1], [30]]),
        ("genril3", [[1, 0, 2]]),
        ("bc", np.zeros(shape=(3, 0), dtype=int)),
    ],
)
def test_crossinfo_valid(crosstype, cross_info):
    """Test that valid cross_info is accepted."""
    cross = get_crosstype(crosstype)
    assert cross.check_crossinfo(np.array(cross_info))


def test_founder_geno_checks():
    """Test the founder genotype size and value checks."""
    cross = get_crosstype("riself4")
    fg = np.array([[1, 3, 0], [3, 3, 1], [1, 1, 3], [3, 1, 1]])
    assert cross.check_founder_geno_size(fg, 3)
    assert cross.check_founder_geno_values(fg)
    with pytest.raises(ValueError):
        cross.check_founder_geno_size(fg, 4)
    with pytest.raises(ValueError):
        cross.check_founder_geno_size(fg[:3, :], 3)
    with pytest.raises(ValueError):
        cross.check_founder_geno_values(fg + 1)


def test_handle_x_chr():
    """Test the X chromosome handling and its warning."""
    assert get_crosstype("bc").check_handle_x_chr(True)
    assert get_crosstype("riself").check_handle_x_chr(False)
    with pytest.warns(UserWarning, match="X chr ignored"):
        assert not get_crosstype("riself").check_handle_x_chr(True)


def test_check_geno():
    """Test observed and true genotype validity."""
    bc = get_crosstype("bc")
    assert bc.check_geno(0, True)
    assert bc.check_geno(2, True)
    assert not bc.check_geno(3, True)
    assert bc.check_geno(3, False, is_x_chr=True, is_female=False)
    assert not bc.check_geno(3, False, is_x_chr=True, is_female=True)
    f2 = get_crosstype("f2")
    assert f2.check_geno(5, True)
    assert f2.check_geno(3, False, is_x_chr=True, is_female=True, cross_info=(1,))
    assert not f2.check_geno(1, False, is_x_chr=True, is_female=True, cross_info=(1,))


def test_nrec():
    """Test the number of recombinations between genotypes."""
    f2 = get_crosstype("f2")
    assert f2.nrec(1, 3) == 2
    assert f2.nrec(2, 3) == 1
    assert f2.nrec(2, 2) == 0
    do = get_crosstype("do")
    assert do.nrec(encode_pair(0, 1), encode_pair(1, 0)) == 0
    assert do.nrec(encode_pair(0, 1), encode_pair(1, 2)) == 1
    assert do.nrec(encode_pair(0, 1), encode_pair(2, 3)) == 2


def test_f2_emission_partial_calls():
    """Test the not-AA / not-BB emission probabilities in the intercross."""
    f2 = get_crosstype("f2")
    e = 0.01
    assert np.isclose(np.exp(f2.emit_prob(4, 1, e)), 1 - e / 2)
    assert np.isclose(np.exp(f2.emit_prob(4, 3, e)), e)
    assert np.isclose(np.exp(f2.emit_prob(5, 1, e)), e)
    assert np.isclose(np.exp(f2.emit_prob(5, 2, e)), 1 - e / 2)


def test_founder_emission():
    """Test the founder-allele emission rule."""
    cross = get_crosstype("riself4")
    e = 0.01
    fg = (1, 3, 0, 1)
    assert np.isclose(np.exp(cross.emit_prob(1, 1, e, fg)), 1 - e)
    assert np.isclose(np.exp(cross.emit_prob(3, 1, e, fg)), e)
    # missing founder allele is uninformative
    assert cross.emit_prob(1, 3, e, fg) == 0.0
    assert cross.emit_prob(4, 3, e, fg) == 0.0
    do = get_crosstype("do")
    fg = (1, 3, 1, 1, 1, 1, 0, 0)
    assert np.isclose(np.exp(do.emit_prob(2, encode_pair(0, 1), e, fg)), 1 - e)
    assert np.isclose(np.exp(do.emit_prob(1, encode_pair(0, 1), e, fg)), e)
    # one founder allele missing admits both alleles
    assert np.isclose(np.exp(do.emit_prob(2, encode_pair(0, 6), e, fg)), 1 - e)
    assert np.isclose(np.exp(do.emit_prob(3, encode_pair(0, 6), e, fg)), e)
    assert do.emit_prob(2, encode_pair(6, 7), e, fg) == 0.0
    # partial calls match any overlapping class in outbred crosses
    assert np.isclose(np.exp(do.emit_prob(4, encode_pair(0, 1), e, fg)), 1 - e)
    assert np.isclose(np.exp(do.emit_prob(5, encode_pair(0, 0), e, fg)), e)


@pytest.mark.parametrize("crosstype", ["riself4", "riself8", "risib8", "genril4"])
def test_founder_emission_partial_calls_inbred(crosstype):
    """Test that partial calls count as errors in homozygous lines."""
    cross = get_crosstype(crosstype)
    e = 0.01
    fg = np.array([1, 3] * 4)[: cross.n_founders]
    for g in [1, 2]:
        for obs in [4, 5]:
            assert np.isclose(cross.emit_prob(obs, g, e, fg), np.log(e))


def test_riself_map_expansion():
    """Test the RIL recombination fraction against its closed form."""
    riself = get_crosstype("riself")
    r = 0.1
    assert np.isclose(np.exp(riself.step_prob(1, 2, r)), 2 * r / (1 + 2 * r))
    assert np.isclose(riself.inverse_expansion(riself.map_expansion(r)), r)
    risib = get_crosstype("risib")
    assert np.isclose(np.exp(risib.step_prob(1, 2, r)), 4 * r / (1 + 6 * r))
    assert np.isclose(risib.inverse_expansion(risib.map_expansion(r)), r)


def brent_rec_frac(cross, counts):
    """Numerical maximiser of the expected complete-data log-likelihood."""

    def neg_q(r):
        q = 0.0
        for gamma, states, is_x_chr, is_female, cross_info in counts:
            logp = cross.step_matrix(r, states, is_x_chr, is_female, cross_info)
            q += np.sum(gamma * np.where(gamma > 0, logp, 0.0))
        return -q

    return minimize_scalar(
        neg_q, bounds=(0.0, 0.5), method="bounded", options={"xatol": 1e-10}
    ).x


@pytest.mark.parametrize(
    "crosstype,seed",
    [("bc", 1), ("riself", 2), ("risib", 3), ("dh", 4), ("riself8", 5), ("riself8", 6)],
)
def test_closed_form_matches_brent(crosstype, seed):
    """Test the closed-form M-step against numerical maximisation."""
    np.random.seed(seed)
    cross = get_crosstype(crosstype)
    counts = []
    for is_x_chr, is_female, cross_info in CROSS_CONTEXTS[crosstype]:
        if is_x_chr:
            continue
        states = cross.possible_genotypes(is_x_chr, is_female, cross_info)
        k = len(states)
        # mostly non-recombinant counts
        gamma = np.random.uniform(size=(k, k)) + 20 * np.eye(k)
        counts.append((gamma, states, is_x_chr, is_female, cross_info))
    r_closed = cross.est_rec_frac(counts)
    r_brent = brent_rec_frac(cross, counts)
    assert r_closed is not None
    assert np.isclose(r_closed, r_brent, atol=1e-5)


@pytest.mark.parametrize("crosstype", ["f2", "do", "risib4", "riself4", "genril3"])
def test_no_closed_form(crosstype):
    """Test that cross types without a closed form defer to numerical maximisation."""
    cross = get_crosstype(crosstype)
    is_x_chr, is_female, cross_info = CROSS_CONTEXTS.get(
        crosstype, [(False, True, (1, 1, 1))]
    )[0]
    states = cross.possible_genotypes(is_x_chr, is_female, cross_info)
    gamma = np.eye(len(states))
    assert cross.est_rec_frac([(gamma, states, is_x_chr, is_female, cross_info)]) is None
