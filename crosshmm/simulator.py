"""Simulation of genotype data from experimental crosses."""

import numpy as np
from scipy.stats import binom, uniform

from .crosses import (
    GeneralAIL,
    GeneralRIL,
    HeterogeneousStock,
    MultiwayRIL,
    OutbredCross,
    get_crosstype,
)
from .maps import positions_to_rec_frac


class GenoSim:
    """Simulator of genotype data under the cross-type models."""

    def __init__(self, crosstype="bc", map_function="haldane"):
        """Initialize the simulator for a cross design."""
        self.cross = get_crosstype(crosstype)
        self.crosstype = self.cross.crosstype
        self.map_function = map_function

    def sim_map(self, chrom_names=("1",), length=100.0, m=11, seed=42):
        """Simulate a map with m markers spread uniformly along each chromosome.

        The first marker of every chromosome sits at 0 cM.
        """
        assert m > 0
        assert length > 0
        assert seed > 0
        np.random.seed(seed)
        gmap = {}
        for c in chrom_names:
            pos = np.sort(uniform.rvs(loc=0.0, scale=length, size=m))
            pos[0] = 0.0
            gmap[c] = pos
        return gmap

    def default_cross_info(self, n_ind=100, seed=42):
        """Cross information typical for the cross design.

        Founder-order RIL get a random funnel for each individual.
        """
        assert n_ind > 0
        assert seed > 0
        np.random.seed(seed)
        cross = self.cross
        if isinstance(cross, MultiwayRIL):
            return np.vstack(
                [np.random.permutation(cross.n_founders) + 1 for _ in range(n_ind)]
            )
        if isinstance(cross, GeneralRIL):
            return np.ones(shape=(n_ind, cross.n_founders), dtype=int)
        if isinstance(cross, HeterogeneousStock):
            return np.full(shape=(n_ind, 1), fill_value=50, dtype=int)
        if isinstance(cross, GeneralAIL):
            return np.hstack(
                [
                    np.full(shape=(n_ind, 1), fill_value=12, dtype=int),
                    np.ones(shape=(n_ind, cross.n_founders), dtype=int),
                ]
            )
        if isinstance(cross, OutbredCross):
            return np.full(shape=(n_ind, 1), fill_value=12, dtype=int)
        return np.zeros(shape=(n_ind, cross.n_crossinfo), dtype=int)

    def _sim_path(self, states, init, trans):
        k = len(states)
        path = np.zeros(len(trans) + 1, dtype=int)
        path[0] = np.random.choice(k, p=init / init.sum())
        for t, step in enumerate(trans):
            p = step[path[t]]
            path[t + 1] = np.random.choice(k, p=p / p.sum())
        return np.asarray(states)[path]

    def sim_geno(
        self,
        gmap,
        n_ind=100,
        is_x_chr=None,
        is_female=None,
        cross_info=None,
        seed=42,
    ):
        """Simulate true genotypes for a set of individuals.

        Arguments:
            - gmap (`dict`): chromosome -> sorted marker positions (cM)
            - n_ind (`int`): number of individuals
            - is_x_chr (`dict`): chromosome -> X chromosome indicator (default all autosomes)
            - is_female (`np.array`): n_ind sex indicators (default all female)
            - cross_info (`np.array`): n_ind x n_crossinfo cross information
            - seed (`int`): random number seed

        Returns:
            - geno (`dict`): chromosome -> n_ind x m true genotype codes

        """
        assert n_ind > 0
        assert seed > 0
        if is_x_chr is None:
            is_x_chr = {c: False for c in gmap}
        if is_female is None:
            is_female = np.ones(n_ind, dtype=bool)
        if cross_info is None:
            cross_info = self.default_cross_info(n_ind, seed=seed)
        cross_info = np.asarray(cross_info, dtype=int).reshape(n_ind, -1)
        assert len(is_female) == n_ind
        handle_x = self.cross.check_handle_x_chr(any(is_x_chr.values()))
        np.random.seed(seed)
        geno = {}
        for c, pos in gmap.items():
            x_chr = bool(is_x_chr.get(c, False)) and handle_x
            rec_frac = positions_to_rec_frac(pos, self.map_function)
            models = {}
            geno[c] = np.zeros(shape=(n_ind, len(pos)), dtype=int)
            for i in range(n_ind):
                female = bool(is_female[i]) if x_chr else True
                ci = tuple(int(x) for x in cross_info[i])
                if (female, ci) not in models:
                    states = self.cross.possible_genotypes(x_chr, female, ci)
                    init = np.exp(self.cross.init_vector(states, x_chr, female, ci))
                    trans = [
                        np.exp(self.cross.step_matrix(r, states, x_chr, female, ci))
                        for r in rec_frac
                    ]
                    models[(female, ci)] = (states, init, trans)
                geno[c][i, :] = self._sim_path(*models[(female, ci)])
        return geno

    def sim_founder_geno(self, gmap, seed=42):
        """Simulate polymorphic biallelic founder genotypes (codes 1 and 3).

        Returns None for cross types that do not use founder genotypes.
        """
        assert seed > 0
        if not self.cross.need_founder_geno:
            return None
        np.random.seed(seed)
        n = self.cross.n_founders
        founder_geno = {}
        for c, pos in gmap.items():
            fg = 1 + 2 * binom.rvs(1, 0.5, size=(n, len(pos)))
            for t in range(len(pos)):
                # every marker is polymorphic among the founders
                while np.all(fg[:, t] == fg[0, t]):
                    fg[:, t] = 1 + 2 * binom.rvs(1, 0.5, size=n)
            founder_geno[c] = fg
        return founder_geno

    def sim_observed(
        self,
        true_geno,
        founder_geno=None,
        error_prob=0.0,
        missing_rate=0.0,
        is_x_chr=None,
        is_female=None,
        cross_info=None,
        seed=42,
    ):
        """Observed genotypes from true genotypes, with errors and missing data.

        Arguments:
            - true_geno (`dict`): chromosome -> n_ind x m true genotype codes
            - founder_geno (`dict`): chromosome -> n_founders x m founder genotypes
            - error_prob (`float`): probability of replacing a call with another class
            - missing_rate (`float`): probability of a missing call
            - seed (`int`): random number seed

        Returns:
            - geno (`dict`): chromosome -> n_ind x m observed genotype codes

        """
        assert (error_prob >= 0) and (error_prob < 1)
        assert (missing_rate >= 0) and (missing_rate < 1)
        assert seed > 0
        np.random.seed(seed)
        cross = self.cross
        calls = [g for g in cross.observed_codes if g in (1, 2, 3)]
        obs = {}
        for c, geno in true_geno.items():
            n_ind, m = geno.shape
            x_chr = bool(is_x_chr.get(c, False)) if is_x_chr is not None else False
            fg = founder_geno.get(c) if founder_geno is not None else None
            obs[c] = np.zeros(shape=(n_ind, m), dtype=int)
            for i in range(n_ind):
                female = bool(is_female[i]) if is_female is not None else True
                ci = tuple(cross_info[i]) if cross_info is not None else ()
                for t in range(m):
                    obs[c][i, t] = cross.observed_geno(
                        geno[i, t],
                        fg[:, t] if fg is not None else None,
                        x_chr,
                        female,
                        ci,
                    )
            errors = (uniform.rvs(size=(n_ind, m)) < error_prob) & (obs[c] > 0)
            for i, t in zip(*np.nonzero(errors)):
                others = [g for g in calls if g != obs[c][i, t]]
                obs[c][i, t] = np.random.choice(others)
            obs[c][uniform.rvs(size=(n_ind, m)) < missing_rate] = 0
        return obs

    def sim_cross(
        self,
        n_ind=100,
        chrom_names=("1",),
        length=100.0,
        m=11,
        x_chrom=None,
        error_prob=0.0,
        missing_rate=0.0,
        seed=42,
    ):
        """Simulate a complete cross dataset.

        Arguments:
            - n_ind (`int`): number of individuals
            - chrom_names (`tuple`): names of the chromosomes
            - length (`float`): length of each chromosome (cM)
            - m (`int`): number of markers per chromosome
            - x_chrom (`str`): name of the X chromosome (if any)
            - error_prob (`float`): genotyping error probability
            - missing_rate (`float`): missing data rate
            - seed (`int`): random number seed

        Returns:
            - res_table (`dict`): simulated data in the layout read by `DataReader`

        """
        assert n_ind > 0
        assert seed > 0
        chrom_names = [str(c) for c in chrom_names]
        if (x_chrom is not None) and (x_chrom not in chrom_names):
            chrom_names.append(x_chrom)
        is_x_chr = {c: c == x_chrom for c in chrom_names}
        np.random.seed(seed)
        is_female = binom.rvs(1, 0.5, size=n_ind).astype(bool)
        cross_info = self.default_cross_info(n_ind, seed=seed)
        gmap = self.sim_map(chrom_names, length=length, m=m, seed=seed)
        true_geno = self.sim_geno(
            gmap,
            n_ind=n_ind,
            is_x_chr=is_x_chr,
            is_female=is_female,
            cross_info=cross_info,
            seed=seed,
        )
        founder_geno = self.sim_founder_geno(gmap, seed=seed)
        handle_x = self.cross.handles_x_chr
        geno = self.sim_observed(
            true_geno,
            founder_geno=founder_geno,
            error_prob=error_prob,
            missing_rate=missing_rate,
            is_x_chr={c: x and handle_x for c, x in is_x_chr.items()},
            is_female=is_female,
            cross_info=cross_info,
            seed=seed,
        )
        res_table = {
            "crosstype": self.crosstype,
            "chrom": np.array(chrom_names),
            "is_x_chr": np.array([is_x_chr[c] for c in chrom_names]),
            "is_female": is_female,
            "cross_info": cross_info,
            "error_prob": error_prob,
            "missing_rate": missing_rate,
            "seed": seed,
        }
        for c in chrom_names:
            res_table[f"geno_{c}"] = geno[c]
            res_table[f"true_geno_{c}"] = true_geno[c]
            res_table[f"gmap_{c}"] = gmap[c]
            if founder_geno is not None:
                res_table[f"founder_geno_{c}"] = founder_geno[c]
        return res_table
