"""Input / output of cross data for crosshmm."""

import numpy as np
import pandas as pd

from .maps import check_map, insert_pseudomarkers


class CrossData:
    """Genotypes, map and covariates of an experimental cross.

    Arguments:
        - crosstype (`str`): registered cross type name
        - geno (`dict`): chromosome -> n_ind x n_markers observed genotype codes
        - gmap (`dict`): chromosome -> sorted marker positions in cM
        - is_x_chr (`dict`): chromosome -> X chromosome indicator
        - is_female (`np.array`): n_ind sex indicators
        - cross_info (`np.array`): n_ind x n_crossinfo cross information
        - founder_geno (`dict`): chromosome -> n_founders x n_markers founder genotypes
        - ind_ids (`list`): individual identifiers
        - marker_names (`dict`): chromosome -> marker names
        - alleles (`str`): allele labels used for genotype names

    """

    def __init__(
        self,
        crosstype,
        geno,
        gmap,
        is_x_chr=None,
        is_female=None,
        cross_info=None,
        founder_geno=None,
        ind_ids=None,
        marker_names=None,
        alleles=None,
    ):
        """Initialize the cross data container."""
        self.crosstype = crosstype
        self.geno = {str(c): np.asarray(g, dtype=int) for c, g in geno.items()}
        self.chrom_names = list(self.geno.keys())
        self.gmap = {str(c): np.asarray(p, dtype=np.float64) for c, p in gmap.items()}
        n_ind = self.geno[self.chrom_names[0]].shape[0] if self.chrom_names else 0
        self.n_ind = n_ind
        if is_x_chr is None:
            is_x_chr = {}
        self.is_x_chr = {c: bool(is_x_chr.get(c, False)) for c in self.chrom_names}
        if is_female is None:
            is_female = np.ones(n_ind, dtype=bool)
        self.is_female = np.asarray(is_female, dtype=bool)
        if cross_info is None:
            cross_info = np.zeros(shape=(n_ind, 0), dtype=int)
        cross_info = np.asarray(cross_info, dtype=int)
        if cross_info.ndim == 1:
            cross_info = cross_info.reshape(n_ind, -1)
        self.cross_info = cross_info
        self.founder_geno = {}
        if founder_geno is not None:
            self.founder_geno = {
                str(c): np.asarray(fg, dtype=int) for c, fg in founder_geno.items()
            }
        self.ind_ids = (
            list(ind_ids) if ind_ids is not None else [f"ind{i}" for i in range(n_ind)]
        )
        if marker_names is None:
            marker_names = {
                c: [f"{c}_m{j}" for j in range(self.geno[c].shape[1])]
                for c in self.chrom_names
            }
        self.marker_names = marker_names
        self.alleles = alleles

    def __repr__(self):
        """Summary of the cross."""
        n_mar = sum(self.geno[c].shape[1] for c in self.chrom_names)
        return (
            f"CrossData(crosstype='{self.crosstype}', n_ind={self.n_ind}, "
            f"n_chr={len(self.chrom_names)}, n_markers={n_mar})"
        )

    def subset(self, chrom_names=None, ind=None):
        """Subset to chromosomes and/or individuals (indices or boolean mask)."""
        if chrom_names is None:
            chrom_names = self.chrom_names
        chrom_names = [str(c) for c in chrom_names]
        for c in chrom_names:
            if c not in self.geno:
                raise ValueError(f"chr {c} not found")
        if ind is None:
            ind = np.arange(self.n_ind)
        ind = np.arange(self.n_ind)[ind]
        return CrossData(
            self.crosstype,
            {c: self.geno[c][ind, :] for c in chrom_names},
            {c: self.gmap[c] for c in chrom_names},
            is_x_chr={c: self.is_x_chr[c] for c in chrom_names},
            is_female=self.is_female[ind],
            cross_info=self.cross_info[ind, :],
            founder_geno={
                c: self.founder_geno[c] for c in chrom_names if c in self.founder_geno
            },
            ind_ids=[self.ind_ids[i] for i in ind],
            marker_names={c: self.marker_names[c] for c in chrom_names},
            alleles=self.alleles,
        )

    def with_pseudomarkers(self, step=1.0, off_end=0.0):
        """Copy of the cross with a grid of pseudomarkers (missing genotypes) inserted."""
        geno, gmap, founder_geno, marker_names = {}, {}, {}, {}
        for c in self.chrom_names:
            check_map(self.gmap[c], chrom=c)
            pos, names, is_marker = insert_pseudomarkers(
                self.gmap[c], step=step, off_end=off_end, names=self.marker_names[c]
            )
            g = np.zeros(shape=(self.n_ind, pos.size), dtype=int)
            g[:, is_marker] = self.geno[c]
            geno[c] = g
            gmap[c] = pos
            marker_names[c] = names
            if c in self.founder_geno:
                fg = np.zeros(
                    shape=(self.founder_geno[c].shape[0], pos.size), dtype=int
                )
                fg[:, is_marker] = self.founder_geno[c]
                founder_geno[c] = fg
        return CrossData(
            self.crosstype,
            geno,
            gmap,
            is_x_chr=self.is_x_chr,
            is_female=self.is_female,
            cross_info=self.cross_info,
            founder_geno=founder_geno if founder_geno else None,
            ind_ids=self.ind_ids,
            marker_names=marker_names,
            alleles=self.alleles,
        )


class DataReader:
    """Input / output class for reading in cross data for crosshmm."""

    def __init__(self, crosstype=None):
        """Initialize the reader; crosstype overrides any stored in the input."""
        self.crosstype = crosstype

    def read_data_np(self, input_fp):
        """Read data from an .npz bundle (the layout written by `GenoSim.sim_cross`)."""
        data = np.load(input_fp, allow_pickle=True)
        for x in ["chrom", "is_female", "cross_info"]:
            if x not in data:
                raise ValueError(f"{input_fp} is missing the field {x}")
        crosstype = self.crosstype
        if crosstype is None:
            if "crosstype" not in data:
                raise ValueError(f"{input_fp} does not record a crosstype")
            crosstype = str(data["crosstype"])
        chrom_names = [str(c) for c in data["chrom"]]
        is_x = data["is_x_chr"] if "is_x_chr" in data else np.zeros(len(chrom_names))
        geno, gmap, founder_geno = {}, {}, {}
        for c in chrom_names:
            for x in [f"geno_{c}", f"gmap_{c}"]:
                if x not in data:
                    raise ValueError(f"{input_fp} is missing the field {x}")
            geno[c] = data[f"geno_{c}"]
            gmap[c] = data[f"gmap_{c}"]
            if f"founder_geno_{c}" in data:
                founder_geno[c] = data[f"founder_geno_{c}"]
        return CrossData(
            crosstype,
            geno,
            gmap,
            is_x_chr={c: bool(x) for c, x in zip(chrom_names, is_x)},
            is_female=data["is_female"],
            cross_info=data["cross_info"],
            founder_geno=founder_geno if founder_geno else None,
        )

    def read_data_df(self, input_fp, covar_fp=None, x_chrom="X"):
        """Read in data from a text-based genotype table.

        The table has columns `marker`, `chrom`, `pos` (cM) followed by one
        column per individual. An optional covariate table has columns `id`,
        `is_female` and any number of `cross_info*` columns.
        """
        if self.crosstype is None:
            raise ValueError("crosstype is required for text input")
        sep = ","
        if ".tsv" in input_fp:
            sep = "\t"
        elif ".txt" in input_fp:
            sep = " "
        df = pd.read_csv(input_fp, sep=sep, dtype={"chrom": str, "marker": str})
        for x in ["marker", "chrom", "pos"]:
            if x not in df.columns:
                raise ValueError(f"{input_fp} is missing the column {x}")
        ind_ids = [x for x in df.columns if x not in ["marker", "chrom", "pos"]]
        geno, gmap, marker_names = {}, {}, {}
        for c, cur_df in df.groupby("chrom", sort=False):
            cur_df = cur_df.sort_values("pos", kind="stable")
            geno[c] = cur_df[ind_ids].fillna(0).values.astype(int).T
            gmap[c] = cur_df["pos"].values.astype(np.float64)
            marker_names[c] = cur_df["marker"].tolist()
        is_female = None
        cross_info = None
        if covar_fp is not None:
            covar_df = pd.read_csv(covar_fp, sep=sep, dtype={"id": str}).set_index("id")
            missing = [i for i in ind_ids if i not in covar_df.index]
            if missing:
                raise ValueError(f"covariates missing for individuals {missing}")
            covar_df = covar_df.loc[ind_ids]
            if "is_female" in covar_df.columns:
                is_female = covar_df["is_female"].values.astype(bool)
            ci_cols = [x for x in covar_df.columns if x.startswith("cross_info")]
            if ci_cols:
                cross_info = covar_df[ci_cols].values.astype(int)
        return CrossData(
            self.crosstype,
            geno,
            gmap,
            is_x_chr={c: c == x_chrom for c in geno},
            is_female=is_female,
            cross_info=cross_info,
            ind_ids=ind_ids,
            marker_names=marker_names,
        )

    def read_data(self, input_fp, **kwargs):
        """Read in data in either numpy or text format."""
        if (".npz" in input_fp) or (".npy" in input_fp):
            return self.read_data_np(input_fp)
        return self.read_data_df(input_fp, **kwargs)
