"""Crosshmm is an HMM-based toolkit for genotype reconstruction in experimental crosses.

Crosshmm implements multipoint genotype probabilities, Viterbi
decoding and genetic map re-estimation for backcrosses, intercrosses,
recombinant inbred lines and multi-parent populations.

Modules exported are:

* CrossHMM: module for genotype probabilities, Viterbi paths and EM map estimation.
* GenoSim: module to generate synthetic genotype data from a cross design.
* DataReader: module to read cross data from .npz bundles or genotype tables.
* CrossData: container for the genotypes, map and covariates of a cross.
* get_crosstype: registry lookup of the cross-type models.
"""

__version__ = "0.1.0"

from .crosses import CrossType, get_crosstype, list_crosstypes
from .crosshmm import ComputationInterrupted, CrossHMM, GenoProbs, ViterbiPaths
from .io import CrossData, DataReader
from .simulator import GenoSim
