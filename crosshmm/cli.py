"""CLI for crosshmm."""
import logging

import click
import numpy as np
import pandas as pd

from crosshmm import CrossHMM, DataReader
from crosshmm.maps import MAP_FUNCTIONS

# Setup the logging configuration for the CLI
logging.basicConfig(
    format="%(asctime)s %(levelname)-8s %(message)s",
    level=logging.INFO,
    datefmt="%Y-%m-%d %H:%M:%S",
)


def genoprob_df(probs, data):
    """Long-format table of genotype probabilities (one row per individual and position)."""
    dfs = []
    for c, pr in probs.items():
        n_ind, n_gen, n_pos = pr.shape
        df = pd.DataFrame(
            pr.transpose(0, 2, 1).reshape(n_ind * n_pos, n_gen),
            columns=probs.geno_names[c],
        )
        df["id"] = np.repeat(data.ind_ids, n_pos)
        df["chrom"] = c
        df["marker"] = np.tile(data.marker_names[c], n_ind)
        df["pos"] = np.tile(probs.positions[c], n_ind)
        cols_to_move = ["id", "chrom", "marker", "pos"]
        dfs.append(
            df[cols_to_move + [col for col in df.columns if col not in cols_to_move]]
        )
    return pd.concat(dfs)


def viterbi_df(paths, data):
    """Table of Viterbi genotype codes (one row per position, one column per individual)."""
    dfs = []
    for c, path in paths.items():
        df = pd.DataFrame(path.T, columns=data.ind_ids)
        df.insert(0, "pos", paths.positions[c])
        df.insert(0, "marker", data.marker_names[c])
        df.insert(0, "chrom", c)
        dfs.append(df)
    return pd.concat(dfs)


def map_df(est, data):
    """Table of input and re-estimated marker positions."""
    dfs = []
    for c, res in est.items():
        df = pd.DataFrame(
            {
                "chrom": c,
                "marker": data.marker_names[c],
                "pos": data.gmap[c],
                "pos_est": res["positions"],
                "rec_frac_est": np.append(res["rec_frac"], np.nan),
                "loglik": res["loglik"],
                "converged": res["converged"],
                "n_iter": res["n_iter"],
            }
        )
        dfs.append(df)
    return pd.concat(dfs)


@click.command()
@click.option(
    "--input",
    "-i",
    required=True,
    type=click.Path(exists=True),
    help="Input cross data (.npz bundle or genotype table).",
)
@click.option(
    "--covar",
    required=False,
    default=None,
    type=click.Path(exists=True),
    help="Covariate table (id, is_female, cross_info columns) for text input.",
)
@click.option(
    "--crosstype",
    "-c",
    required=False,
    default=None,
    type=str,
    help="Cross type (required for text input; overrides the .npz bundle).",
)
@click.option(
    "--mode",
    required=True,
    default="genoprob",
    type=click.Choice(["genoprob", "viterbi", "est_map"]),
    show_default=True,
    help="Computation to run.",
)
@click.option(
    "--error_prob",
    "-e",
    required=False,
    default=1e-4,
    type=float,
    show_default=True,
    help="Genotyping error probability.",
)
@click.option(
    "--map_function",
    required=False,
    default="haldane",
    type=click.Choice(MAP_FUNCTIONS),
    show_default=True,
    help="Map function relating cM to recombination fractions.",
)
@click.option(
    "--step",
    required=False,
    default=0.0,
    type=float,
    show_default=True,
    help="Pseudomarker spacing in cM (0 for none).",
)
@click.option(
    "--max_iter",
    required=False,
    default=10000,
    type=int,
    show_default=True,
    help="Maximum number of EM iterations for est_map.",
)
@click.option(
    "--tol",
    required=False,
    default=1e-6,
    type=float,
    show_default=True,
    help="Convergence tolerance for est_map.",
)
@click.option(
    "--cores",
    required=False,
    default=1,
    type=int,
    show_default=True,
    help="Number of worker processes.",
)
@click.option(
    "--gzip",
    "-g",
    is_flag=True,
    required=False,
    type=bool,
    default=False,
    help="Gzip output files.",
)
@click.option(
    "--out",
    "-o",
    required=True,
    type=str,
    default="crosshmm",
    help="Output file prefix.",
)
def main(
    input,
    covar=None,
    crosstype=None,
    mode="genoprob",
    error_prob=1e-4,
    map_function="haldane",
    step=0.0,
    max_iter=10000,
    tol=1e-6,
    cores=1,
    gzip=False,
    out="crosshmm",
):
    """Crosshmm CLI."""
    logging.info(f"Starting to read input data {input}.")
    data_reader = DataReader(crosstype=crosstype)
    if (".npz" in input) or (".npy" in input):
        data = data_reader.read_data(input)
    else:
        data = data_reader.read_data(input, covar_fp=covar)
    logging.info(f"Finished reading in {input}: {data}.")
    hmm = CrossHMM(
        crosstype=data.crosstype,
        error_prob=error_prob,
        map_function=map_function,
        cores=cores,
    )
    if mode == "genoprob":
        if step > 0:
            data = data.with_pseudomarkers(step=step)
            logging.info(f"Inserted pseudomarkers every {step} cM.")
        probs = hmm.calc_genoprob(data)
        df = genoprob_df(probs, data)
        out_fp = f"{out}.genoprob.tsv.gz" if gzip else f"{out}.genoprob.tsv"
        df.to_csv(out_fp, sep="\t", index=None)
        logging.info(f"Wrote genotype probabilities to {out_fp}")
    elif mode == "viterbi":
        if step > 0:
            data = data.with_pseudomarkers(step=step)
            logging.info(f"Inserted pseudomarkers every {step} cM.")
        paths = hmm.viterbi(data)
        df = viterbi_df(paths, data)
        out_fp = f"{out}.viterbi.tsv.gz" if gzip else f"{out}.viterbi.tsv"
        df.to_csv(out_fp, sep="\t", index=None)
        logging.info(f"Wrote Viterbi paths to {out_fp}")
    else:
        est = hmm.est_map(data, max_iterations=max_iter, tol=tol, verbose=True)
        df = map_df(est, data)
        out_fp = f"{out}.map.tsv.gz" if gzip else f"{out}.map.tsv"
        df.to_csv(out_fp, sep="\t", index=None)
        logging.info(f"Wrote re-estimated map to {out_fp}")
    logging.info("Finished crosshmm analysis!")
