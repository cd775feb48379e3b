"""CLI for simulating synthetic cross data in crosshmm."""
import logging

import click
import numpy as np
import pandas as pd

from crosshmm import GenoSim
from crosshmm.crosses import list_crosstypes

# Setup the logging configuration for the CLI
logging.basicConfig(
    format="%(asctime)s %(levelname)-8s %(message)s",
    level=logging.INFO,
    datefmt="%Y-%m-%d %H:%M:%S",
)


@click.command()
@click.option(
    "--crosstype",
    "-c",
    required=True,
    default="bc",
    type=str,
    show_default=True,
    help=f"Cross type, one of {', '.join(list_crosstypes())}.",
)
@click.option(
    "--n_ind",
    "-n",
    required=False,
    default=100,
    type=int,
    show_default=True,
    help="Number of individuals to simulate.",
)
@click.option(
    "--chroms",
    required=False,
    default="1",
    type=str,
    show_default=True,
    help="Comma-separated chromosome names.",
)
@click.option(
    "--x_chrom",
    required=False,
    default=None,
    type=str,
    show_default=True,
    help="Name of the X chromosome (if any).",
)
@click.option(
    "--length",
    "-l",
    required=False,
    default=100.0,
    type=float,
    show_default=True,
    help="Length of each chromosome in cM.",
)
@click.option(
    "--m",
    "-m",
    required=False,
    default=11,
    type=int,
    show_default=True,
    help="Number of markers to simulate per chromosome.",
)
@click.option(
    "--error_prob",
    "-e",
    required=False,
    default=0.0,
    type=float,
    show_default=True,
    help="Genotyping error probability.",
)
@click.option(
    "--missing_rate",
    required=False,
    default=0.0,
    type=float,
    show_default=True,
    help="Proportion of missing genotypes.",
)
@click.option(
    "--seed",
    required=True,
    default=42,
    type=int,
    show_default=True,
    help="Random seed for simulation.",
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
@click.option(
    "--format",
    "-fmt",
    required=True,
    type=click.Choice(["tsv", "npz"]),
    default="npz",
    help="Output file format.",
)
def main(
    crosstype="bc",
    n_ind=100,
    chroms="1",
    x_chrom=None,
    length=100.0,
    m=11,
    error_prob=0.0,
    missing_rate=0.0,
    seed=42,
    gzip=False,
    out="crosshmm",
    format="npz",
):
    """Crosshmm-Simulator CLI."""
    logging.info(f"Starting simulation of a {crosstype} cross ...")
    geno_sim = GenoSim(crosstype=crosstype)
    chrom_names = [c.strip() for c in chroms.split(",") if c.strip()]
    results = geno_sim.sim_cross(
        n_ind=n_ind,
        chrom_names=chrom_names,
        length=length,
        m=m,
        x_chrom=x_chrom,
        error_prob=error_prob,
        missing_rate=missing_rate,
        seed=seed,
    )
    if format == "tsv":
        if geno_sim.cross.need_founder_geno:
            raise click.BadParameter(
                f"{crosstype} needs founder genotypes; use --format npz",
                param_hint="--format",
            )
        logging.info("Writing output in TSV format (true genotypes are not kept) ...")
        ind_ids = [f"ind{i}" for i in range(n_ind)]
        dfs = []
        for c in results["chrom"]:
            df = pd.DataFrame(results[f"geno_{c}"].T, columns=ind_ids)
            df.insert(0, "pos", results[f"gmap_{c}"])
            df.insert(0, "chrom", c)
            df.insert(0, "marker", [f"{c}_m{j}" for j in range(df.shape[0])])
            dfs.append(df)
        out_fp = f"{out}.tsv.gz" if gzip else f"{out}.tsv"
        pd.concat(dfs).to_csv(out_fp, sep="\t", index=None)
        logging.info(f"Wrote genotypes to {out_fp}")
        covar_df = pd.DataFrame({"id": ind_ids, "is_female": results["is_female"]})
        for j in range(results["cross_info"].shape[1]):
            covar_df[f"cross_info{j}"] = results["cross_info"][:, j]
        covar_fp = f"{out}.covar.tsv.gz" if gzip else f"{out}.covar.tsv"
        covar_df.to_csv(covar_fp, sep="\t", index=None)
        logging.info(f"Wrote covariates to {covar_fp}")
    else:
        logging.info("Writing output in NPZ format ...")
        out_fp = f"{out}.npz"
        logging.info(f"Writing output to {out}.npz ...")
        np.savez(out_fp, **results)
    logging.info("Finished data simulation!")
