"""Helper functions for the crosshmm test suite."""

import numpy as np

from crosshmm import CrossData, GenoSim

# Representative (is_x_chr, is_female, cross_info) contexts for each cross type
CROSS_CONTEXTS = {
    "bc": [(False, True, ()), (True, True, ()), (True, False, ())],
    "f2": [
        (False, True, (0,)),
        (True, True, (0,)),
        (True, True, (1,)),
        (True, False, (0,)),
        (True, False, (1,)),
    ],
    "riself": [(False, True, ())],
    "risib": [
        (False, True, (0,)),
        (True, True, (0,)),
        (True, True, (1,)),
        (True, False, (1,)),
    ],
    "dh": [(False, True, ())],
    "haploid": [(False, True, ())],
    "riself4": [(False, True, (1, 2, 3, 4)), (False, True, (3, 1, 4, 2))],
    "riself8": [
        (False, True, (1, 2, 3, 4, 5, 6, 7, 8)),
        (False, True, (5, 2, 8, 1, 3, 7, 4, 6)),
    ],
    "riself16": [(False, True, tuple(range(16, 0, -1)))],
    "risib4": [(False, True, (2, 4, 1, 3))],
    "risib8": [(False, True, (8, 7, 6, 5, 4, 3, 2, 1))],
    "genril4": [(False, True, (1, 1, 1, 1)), (False, True, (2, 1, 0, 1))],
    "ail": [(False, True, (2,)), (False, True, (15,))],
    "do": [(False, True, (1,)), (False, True, (20,))],
    "hs": [(False, True, (50,))],
    "genail3": [(False, True, (10, 1, 2, 3))],
}

# Cross types whose observed genotypes identify the true genotype
IDENTIFIABLE_CROSSES = ["bc", "f2", "riself", "risib", "dh", "haploid", "ail"]


def sim_cross_data(
    crosstype="bc",
    n_ind=20,
    chrom_names=("1", "2"),
    length=100.0,
    m=11,
    x_chrom=None,
    error_prob=0.0,
    missing_rate=0.0,
    seed=42,
):
    """Simulate a cross and return it as `CrossData` plus the true genotypes."""
    geno_sim = GenoSim(crosstype=crosstype)
    res = geno_sim.sim_cross(
        n_ind=n_ind,
        chrom_names=chrom_names,
        length=length,
        m=m,
        x_chrom=x_chrom,
        error_prob=error_prob,
        missing_rate=missing_rate,
        seed=seed,
    )
    chroms = [str(c) for c in res["chrom"]]
    founder_geno = None
    if f"founder_geno_{chroms[0]}" in res:
        founder_geno = {c: res[f"founder_geno_{c}"] for c in chroms}
    data = CrossData(
        res["crosstype"],
        {c: res[f"geno_{c}"] for c in chroms},
        {c: res[f"gmap_{c}"] for c in chroms},
        is_x_chr={c: x for c, x in zip(chroms, res["is_x_chr"])},
        is_female=res["is_female"],
        cross_info=res["cross_info"],
        founder_geno=founder_geno,
    )
    true_geno = {c: res[f"true_geno_{c}"] for c in chroms}
    return data, true_geno


def single_ind_data(crosstype, geno, pos, cross_info=None, founder_geno=None):
    """A one-individual, one-chromosome cross."""
    geno = np.atleast_2d(np.asarray(geno, dtype=int))
    return CrossData(
        crosstype,
        {"1": geno},
        {"1": np.asarray(pos, dtype=float)},
        cross_info=cross_info,
        founder_geno=None if founder_geno is None else {"1": founder_geno},
    )
