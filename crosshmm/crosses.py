"""
Cross-type probability models for the genotype HMM.

Each cross design supplies its own genotype state space, initial,
emission and transition probabilities (all as natural logs) and the
input checks that go with them. The HMM algorithms in `crosshmm.crosshmm`
are written once against the `CrossType` interface.

Cross types available are:

- bc: backcross (with X chromosome)
- f2: intercross (with X chromosome)
- riself, risib, dh, haploid: two-way inbred lines (risib with X chromosome)
- riself4, riself8, riself16, risib4, risib8: multi-way RIL with a founder order
- genril<n>: n-way RIL by sib mating with founder proportions
- ail, hs, do, genail<n>: outbred advanced intercross designs

"""

import math
import re
import warnings

import numpy as np

# Observed genotype codes shared by all cross types
MISSING, AA, AB, BB, NOT_BB, NOT_AA = 0, 1, 2, 3, 4, 5

# Observed genotype classes compatible with each observed code
OBS_CLASSES = {
    AA: frozenset([AA]),
    AB: frozenset([AB]),
    BB: frozenset([BB]),
    NOT_BB: frozenset([AA, AB]),
    NOT_AA: frozenset([AB, BB]),
}

ALLELE_LABELS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def safe_log(x):
    """Natural log that maps a zero probability to -inf."""
    if x <= 0.0:
        return -math.inf
    return math.log(x)


def encode_pair(i, j):
    """Genotype code for the unordered founder pair (i, j), 0-based founders."""
    if i > j:
        i, j = j, i
    return j * (j + 1) // 2 + i + 1


def decode_pair(code):
    """Founder pair (i, j) with i <= j for a diploid genotype code."""
    c = code - 1
    j = 0
    while (j + 1) * (j + 2) // 2 <= c:
        j += 1
    return c - j * (j + 1) // 2, j


def invert_founder_index(cross_info):
    """Position of each founder in the cross order (0-based)."""
    founder_index = np.zeros(len(cross_info), dtype=int)
    for pos, founder in enumerate(cross_info):
        founder_index[founder - 1] = pos
    return founder_index


def _as_matrix(cross_info):
    cross_info = np.asarray(cross_info)
    if cross_info.ndim == 1:
        cross_info = cross_info.reshape(1, -1)
    return cross_info


class CrossType:
    """Base class for all the cross-type models.

    Arguments common to most methods:
        - is_x_chr (`bool`): whether the chromosome is the X chromosome
        - is_female (`bool`): sex of the individual
        - cross_info (`tuple`): per-individual breeding history codes

    """

    crosstype = None
    n_founders = 2
    n_crossinfo = 0
    need_founder_geno = False
    handles_x_chr = False
    observed_codes = (MISSING, AA, AB, BB, NOT_BB, NOT_AA)

    def __repr__(self):
        """Representation using the registered cross type name."""
        return f"{self.__class__.__name__}('{self.crosstype}')"

    def check_geno(
        self, gen, is_observed, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Check that a genotype code is legal.

        Observed codes may carry missing (0) and partially-informative values;
        true codes must be in the enumerable state space.

        """
        if is_observed:
            return gen in self.observed_codes
        return gen in self.possible_genotypes(is_x_chr, is_female, cross_info)

    def n_genotypes(self, is_x_chr=False):
        """Number of genotype codes for the chromosome type."""
        raise NotImplementedError

    def n_alleles(self):
        """Number of founder alleles."""
        return self.n_founders

    def possible_genotypes(self, is_x_chr=False, is_female=True, cross_info=()):
        """Ordered genotype codes admissible for this individual."""
        return list(range(1, self.n_genotypes(is_x_chr) + 1))

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Log initial probability of a genotype."""
        raise NotImplementedError

    def emit_prob(
        self,
        obs,
        gen,
        error_prob,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Log probability of an observed genotype given the true one."""
        raise NotImplementedError

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability between adjacent positions."""
        raise NotImplementedError

    def nrec(self, gen_left, gen_right, is_x_chr=False, is_female=True, cross_info=()):
        """Number of recombination events implied by a change of genotype."""
        return int(gen_left != gen_right)

    def observed_geno(
        self, gen, founder_geno=None, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Error-free observed code for a true genotype."""
        raise NotImplementedError

    def geno_names(self, alleles=None, is_x_chr=False):
        """Display labels for all the genotype codes."""
        raise NotImplementedError

    def est_rec_frac(self, counts):
        """Closed-form M-step for the recombination fraction in an interval.

        Arguments:
            - counts (`list`): tuples (gamma, states, is_x_chr, is_female, cross_info),
              gamma being the k x k summed posterior over adjacent genotype pairs

        Returns:
            - rec_frac (`float`): the estimate, or None when no closed form exists

        """
        return None

    # --- vectorised views used by the HMM engine --- #
    def init_vector(self, states, is_x_chr=False, is_female=True, cross_info=()):
        """Log initial probabilities over the given states."""
        return np.array(
            [self.init_prob(g, is_x_chr, is_female, cross_info) for g in states],
            dtype=np.float64,
        )

    def step_matrix(
        self, rec_frac, states, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition matrix over the given states for one interval."""
        k = len(states)
        step = np.zeros(shape=(k, k), dtype=np.float64)
        for i, gl in enumerate(states):
            for j, gr in enumerate(states):
                step[i, j] = self.step_prob(
                    gl, gr, rec_frac, is_x_chr, is_female, cross_info
                )
        return step

    def emit_table(
        self,
        error_prob,
        states,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Log emission table with shape (n_observed_codes x k) for one marker."""
        n_codes = max(self.observed_codes) + 1
        table = np.zeros(shape=(n_codes, len(states)), dtype=np.float64)
        for obs in self.observed_codes:
            for j, g in enumerate(states):
                table[obs, j] = self.emit_prob(
                    obs, g, error_prob, founder_geno, is_x_chr, is_female, cross_info
                )
        return table

    # --- input validation --- #
    def check_crossinfo(self, cross_info, any_x_chr=False):
        """Check that the cross information matrix conforms to expectation.

        Raises a `ValueError` naming the problem when it does not.
        """
        cross_info = _as_matrix(cross_info)
        if cross_info.shape[1] != self.n_crossinfo:
            raise ValueError(
                f"cross_info for {self.crosstype} should have {self.n_crossinfo} "
                f"columns, not {cross_info.shape[1]}"
            )
        return True

    def check_founder_geno_size(self, founder_geno, n_markers):
        """Check the founder genotype matrix has the right dimensions."""
        founder_geno = np.asarray(founder_geno)
        if founder_geno.ndim != 2:
            raise ValueError("founder_geno should be a founders x markers matrix")
        if founder_geno.shape[1] != n_markers:
            raise ValueError("founder_geno has incorrect number of markers")
        if founder_geno.shape[0] != self.n_founders:
            raise ValueError(f"founder_geno should have {self.n_founders} founders")
        return True

    def check_founder_geno_values(self, founder_geno):
        """Check the founder genotypes are all in {0, 1, 3}."""
        if not np.all(np.isin(founder_geno, [0, 1, 3])):
            raise ValueError(
                "founder_geno contains invalid values; should be in {0, 1, 3}"
            )
        return True

    def check_handle_x_chr(self, any_x_chr):
        """Whether the X chromosome can be modelled; warn if it will be ignored."""
        if any_x_chr and not self.handles_x_chr:
            warnings.warn(
                f"X chr ignored for {self.crosstype}; treated as an autosome.",
                UserWarning,
            )
            return False
        return True


class Backcross(CrossType):
    """Backcross (AxB)xA; females AA/AB and males AY/BY on the X chromosome."""

    crosstype = "bc"
    handles_x_chr = True
    observed_codes = (MISSING, AA, AB)

    def n_genotypes(self, is_x_chr=False):
        """Two autosomal genotypes, four on the X chromosome."""
        return 4 if is_x_chr else 2

    def possible_genotypes(self, is_x_chr=False, is_female=True, cross_info=()):
        """AA/AB, or AY/BY for males on the X chromosome."""
        if is_x_chr and not is_female:
            return [3, 4]
        return [1, 2]

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Each genotype is equally likely."""
        return -math.log(2.0)

    def observed_geno(
        self, gen, founder_geno=None, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Hemizygous males are reported with the homozygous codes."""
        return AA if gen in (1, 3) else AB

    def emit_prob(
        self,
        obs,
        gen,
        error_prob,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Log emission probability under a simple error model."""
        if obs == MISSING:
            return 0.0
        if obs == self.observed_geno(gen):
            return safe_log(1.0 - error_prob)
        return safe_log(error_prob)

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability for a single meiosis."""
        if gen_left == gen_right:
            return safe_log(1.0 - rec_frac)
        return safe_log(rec_frac)

    def geno_names(self, alleles=None, is_x_chr=False):
        """Genotype labels from the two allele labels."""
        a, b = (alleles or ALLELE_LABELS)[:2]
        names = [a + a, a + b]
        if is_x_chr:
            names += [a + "Y", b + "Y"]
        return names

    def est_rec_frac(self, counts):
        """The recombination fraction is the expected recombinant proportion."""
        return _two_state_rec_frac(counts, lambda R: R)


class Intercross(CrossType):
    """F2 intercross; the X chromosome depends on sex and cross direction."""

    crosstype = "f2"
    n_crossinfo = 1
    handles_x_chr = True

    # observed class for each true genotype: AA AB BA BB AY BY on the X
    _x_class = {1: AA, 2: AB, 3: AB, 4: BB, 5: AA, 6: BB}

    def n_genotypes(self, is_x_chr=False):
        """Three autosomal genotypes, six on the X chromosome."""
        return 6 if is_x_chr else 3

    def possible_genotypes(self, is_x_chr=False, is_female=True, cross_info=()):
        """Genotypes by chromosome type, sex and cross direction."""
        if not is_x_chr:
            return [1, 2, 3]
        if not is_female:
            return [5, 6]
        if len(cross_info) > 0 and cross_info[0] == 1:
            return [3, 4]
        return [1, 2]

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Mendelian 1:2:1 segregation on autosomes; 1:1 on the X."""
        if is_x_chr:
            return -math.log(2.0)
        if gen == 2:
            return -math.log(2.0)
        return -math.log(4.0)

    def observed_geno(
        self, gen, founder_geno=None, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Observed code for a true genotype."""
        if is_x_chr:
            return self._x_class[gen]
        return gen

    def emit_prob(
        self,
        obs,
        gen,
        error_prob,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Log emission probability; errors are spread over the other classes."""
        if obs == MISSING:
            return 0.0
        g = self.observed_geno(gen, is_x_chr=is_x_chr)
        if obs in (AA, AB, BB):
            if obs == g:
                return safe_log(1.0 - error_prob)
            return safe_log(error_prob / 2.0)
        if g in OBS_CLASSES[obs]:
            return safe_log(1.0 - error_prob / 2.0)
        return safe_log(error_prob)

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability, phase-unknown on the autosomes."""
        r = rec_frac
        if is_x_chr:
            if gen_left == gen_right:
                return safe_log(1.0 - r)
            return safe_log(r)
        if gen_left == 2:
            if gen_right == 2:
                return safe_log((1.0 - r) ** 2 + r**2)
            return safe_log(r * (1.0 - r))
        if gen_left == gen_right:
            return 2.0 * safe_log(1.0 - r)
        if gen_right == 2:
            return math.log(2.0) + safe_log(r) + safe_log(1.0 - r)
        return 2.0 * safe_log(r)

    def nrec(self, gen_left, gen_right, is_x_chr=False, is_female=True, cross_info=()):
        """Change in B-allele dosage between the positions."""
        if is_x_chr:
            return int(gen_left != gen_right)
        return abs(gen_left - gen_right)

    def geno_names(self, alleles=None, is_x_chr=False):
        """Genotype labels from the two allele labels."""
        a, b = (alleles or ALLELE_LABELS)[:2]
        if is_x_chr:
            return [a + a, a + b, b + a, b + b, a + "Y", b + "Y"]
        return [a + a, a + b, b + b]

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """One column of cross direction, 0 = (AxB)x(AxB) and 1 = (BxA)x(BxA)."""
        cross_info = _as_matrix(cross_info)
        if cross_info.shape[1] == 0 and not any_x_chr:
            return True
        if cross_info.shape[1] != 1:
            raise ValueError("cross_info for f2 should have 1 column, cross direction")
        if np.any(cross_info < 0):
            raise ValueError("cross_info has missing values (it shouldn't)")
        if np.any(cross_info > 1):
            raise ValueError("cross_info has invalid values; should be 0 or 1")
        return True


class InbredTwoWay(CrossType):
    """Two-way homozygous lines: genotypes AA (1) and BB (2).

    Subclasses define `map_expansion` (R as a function of r) and its inverse.
    """

    observed_codes = (MISSING, 1, 2)

    def n_genotypes(self, is_x_chr=False):
        """Two genotypes on every chromosome."""
        return 2

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Both founders are equally frequent."""
        return -math.log(2.0)

    def observed_geno(
        self, gen, founder_geno=None, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Observed codes are the genotype codes."""
        return gen

    def emit_prob(
        self,
        obs,
        gen,
        error_prob,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Log emission probability under a simple error model."""
        if obs == MISSING:
            return 0.0
        if obs == gen:
            return safe_log(1.0 - error_prob)
        return safe_log(error_prob)

    def map_expansion(self, r):
        """Probability the line has different founders at the two loci."""
        raise NotImplementedError

    def inverse_expansion(self, R):
        """Recombination fraction that gives the haplotype-switch probability R."""
        raise NotImplementedError

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability from the map expansion."""
        R = self.map_expansion(rec_frac)
        if gen_left == gen_right:
            return safe_log(1.0 - R)
        return safe_log(R)

    def geno_names(self, alleles=None, is_x_chr=False):
        """Genotype labels from the two allele labels."""
        a, b = (alleles or ALLELE_LABELS)[:2]
        return [a + a, b + b]

    def est_rec_frac(self, counts):
        """Invert the expected proportion of founder switches."""
        return _two_state_rec_frac(counts, self.inverse_expansion)


class DoubledHaploid(InbredTwoWay):
    """Doubled haploids; a single meiosis."""

    crosstype = "dh"

    def map_expansion(self, r):
        """No map expansion."""
        return r

    def inverse_expansion(self, R):
        """No map expansion."""
        return R


class Haploid(DoubledHaploid):
    """Haploids; a single meiosis and one allele per genotype."""

    crosstype = "haploid"

    def geno_names(self, alleles=None, is_x_chr=False):
        """Genotype labels are the allele labels."""
        a, b = (alleles or ALLELE_LABELS)[:2]
        return [a, b]


class RILSelf(InbredTwoWay):
    """Two-way RIL by selfing (Haldane and Waddington 1931)."""

    crosstype = "riself"

    def map_expansion(self, r):
        """R = 2r / (1 + 2r)."""
        return 2.0 * r / (1.0 + 2.0 * r)

    def inverse_expansion(self, R):
        """r = R / 2(1 - R)."""
        if R >= 0.5:
            return 0.5
        return R / (2.0 * (1.0 - R))


class RILSib(InbredTwoWay):
    """Two-way RIL by sib mating; on the X chromosome founder A contributes 2/3."""

    crosstype = "risib"
    n_crossinfo = 1
    handles_x_chr = True

    def map_expansion(self, r):
        """R = 4r / (1 + 6r)."""
        return 4.0 * r / (1.0 + 6.0 * r)

    def inverse_expansion(self, R):
        """r = R / (4 - 6R)."""
        if R >= 0.5:
            return 0.5
        return R / (4.0 - 6.0 * R)

    def _x_major(self, cross_info):
        # founder contributing two of the three X chromosomes: A for AxB, B for BxA
        if len(cross_info) > 0 and cross_info[0] == 1:
            return 2
        return 1

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Equal frequencies on autosomes; 2/3 vs 1/3 on the X."""
        if not is_x_chr:
            return -math.log(2.0)
        if gen == self._x_major(cross_info):
            return math.log(2.0) - math.log(3.0)
        return -math.log(3.0)

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability; X chr follows Broman (2005)."""
        if not is_x_chr:
            return super().step_prob(gen_left, gen_right, rec_frac)
        r = rec_frac
        denom = math.log(1.0 + 4.0 * r)
        major = self._x_major(cross_info)
        if gen_left == major:
            if gen_right == major:
                return math.log(1.0 + 2.0 * r) - denom
            return safe_log(2.0 * r) - denom
        if gen_right == gen_left:
            return -denom
        return safe_log(4.0 * r) - denom

    def est_rec_frac(self, counts):
        """Closed form on autosomes only."""
        if any(is_x_chr for _, _, is_x_chr, _, _ in counts):
            return None
        return super().est_rec_frac(counts)

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """One column of cross direction, 0 = AxB and 1 = BxA."""
        cross_info = _as_matrix(cross_info)
        if cross_info.shape[1] == 0 and not any_x_chr:
            return True
        if cross_info.shape[1] != 1:
            raise ValueError(
                "cross_info for risib should have 1 column, cross direction"
            )
        if np.any(cross_info < 0):
            raise ValueError("cross_info has missing values (it shouldn't)")
        if np.any(cross_info > 1):
            raise ValueError("cross_info has invalid values; should be 0 or 1")
        return True


def _two_state_rec_frac(counts, inverse):
    """Closed-form M-step shared by the two-state designs."""
    n_same = 0.0
    n_total = 0.0
    for gamma, states, is_x_chr, is_female, cross_info in counts:
        n_same += np.trace(gamma)
        n_total += np.sum(gamma)
    if n_total <= 0:
        return None
    R = (n_total - n_same) / n_total
    return float(np.clip(inverse(R), 0.0, 0.5))


class FounderGenoCross(CrossType):
    """Shared emission model for crosses defined against founder genotypes."""

    need_founder_geno = True
    implicit_founder_geno = None
    # whether a partial call (not-BB / not-AA) can match the founder alleles
    partial_calls_match = True

    def founder_alleles(self, gen):
        """Founders (0-based) carried by a genotype."""
        raise NotImplementedError

    def _founder_geno(self, founder_geno):
        if founder_geno is None:
            if self.implicit_founder_geno is None:
                raise ValueError(f"founder_geno is required for {self.crosstype}")
            return self.implicit_founder_geno
        return founder_geno

    def expected_classes(self, gen, founder_geno):
        """Observed classes consistent with the founder alleles of a genotype.

        Returns None when every founder allele implicated is missing.
        """
        founder_geno = self._founder_geno(founder_geno)
        alleles = [founder_geno[f] for f in self.founder_alleles(gen)]
        if all(a not in (1, 3) for a in alleles):
            return None
        options = [[a] if a in (1, 3) else [1, 3] for a in alleles]
        if len(options) == 1:
            return frozenset(options[0])
        classes = set()
        for a in options[0]:
            for b in options[1]:
                classes.add(a if a == b else AB)
        return frozenset(classes)

    def emit_prob(
        self,
        obs,
        gen,
        error_prob,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Log emission from the founder alleles of the true genotype."""
        if obs == MISSING:
            return 0.0
        expected = self.expected_classes(gen, founder_geno)
        if expected is None:
            return 0.0
        if obs in (NOT_BB, NOT_AA) and not self.partial_calls_match:
            return safe_log(error_prob)
        if expected & OBS_CLASSES[obs]:
            return safe_log(1.0 - error_prob)
        return safe_log(error_prob)

    def observed_geno(
        self, gen, founder_geno=None, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Observed code implied by the founder alleles (0 if unknown)."""
        expected = self.expected_classes(gen, founder_geno)
        if expected is None or len(expected) > 1:
            return MISSING
        return next(iter(expected))


class MultiwayRIL(FounderGenoCross):
    """Multi-way RIL with a per-individual founder order in cross_info.

    Lines are homozygous, so an observed call matches only the founder allele
    itself; partial calls count as genotyping errors.
    """

    mating = None
    partial_calls_match = False

    def __init__(self, n_founders):
        """Initialize a multi-way RIL with n founders."""
        self.n_founders = n_founders
        self.n_crossinfo = n_founders
        self.crosstype = f"{self.mating}{n_founders}"
        self.n_levels = int(round(math.log2(n_founders)))

    def n_genotypes(self, is_x_chr=False):
        """One homozygous genotype per founder."""
        return self.n_founders

    def founder_alleles(self, gen):
        """A homozygous line carries a single founder."""
        return [gen - 1]

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Founders are equally frequent."""
        return -math.log(self.n_founders)

    def geno_names(self, alleles=None, is_x_chr=False):
        """Doubled allele labels."""
        alleles = alleles or ALLELE_LABELS
        if len(alleles) < self.n_founders:
            raise ValueError(f"alleles must have length {self.n_founders}")
        return [alleles[i] + alleles[i] for i in range(self.n_founders)]

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """Each row must be a permutation of the founders 1..n."""
        cross_info = _as_matrix(cross_info)
        n = self.n_founders
        if cross_info.shape[1] != n:
            raise ValueError(
                f"cross_info should have {n} columns, indicating the order of the cross"
            )
        if np.any(cross_info < 0):
            raise ValueError("cross_info has missing values (it shouldn't)")
        for row in cross_info:
            if sorted(row.tolist()) != list(range(1, n + 1)):
                raise ValueError(
                    f"cross_info has invalid values; each row should be permutation of {{1, 2, ..., {n}}}"
                )
        return True


class RILSelfMultiway(MultiwayRIL):
    """RIL by selfing from 4, 8 or 16 founders crossed in a funnel.

    Transition probabilities follow Broman (2005) and Teuscher and Broman
    (2007): they depend on how far apart the two founders sit in the
    funnel given by the individual's cross_info.
    """

    mating = "riself"

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability by funnel distance."""
        r = rec_frac
        L = self.n_levels
        denom = math.log(1.0 + 2.0 * r)
        if gen_left == gen_right:
            return (L - 1) * safe_log(1.0 - r) - denom
        founder_index = invert_founder_index(cross_info)
        p_left = founder_index[gen_left - 1]
        p_right = founder_index[gen_right - 1]
        level = 1
        while (p_left >> level) != (p_right >> level):
            level += 1
        if level < L:
            return (
                (L - 1 - level) * safe_log(1.0 - r)
                + safe_log(r)
                - (level - 1) * math.log(2.0)
                - denom
            )
        return safe_log(r) - (L - 2) * math.log(2.0) - denom

    def est_rec_frac(self, counts):
        """Quadratic-root MLE for the eight-way design; otherwise None."""
        if self.n_founders != 8:
            return None
        u = v = w = 0.0
        for gamma, states, is_x_chr, is_female, cross_info in counts:
            founder_index = invert_founder_index(cross_info)
            k = len(states)
            for gl in range(k):
                u += gamma[gl, gl]
                for gr in range(gl + 1, k):
                    pair = gamma[gl, gr] + gamma[gr, gl]
                    if (
                        founder_index[states[gl] - 1] // 2
                        == founder_index[states[gr] - 1] // 2
                    ):
                        v += pair
                    else:
                        w += pair
        n = u + v + w
        if n <= 0:
            return None
        denom = n - w - 2.0 * v - 2.0 * u
        if denom == 0:
            return 0.5
        A = math.sqrt(
            4.0 * n * n
            + 4.0 * n * (2.0 * u - 2.0 * v - 3.0 * w)
            + 9.0 * w * w
            + 12.0 * w * (u + 2.0 * v)
            + 16.0 * v * v
            + 16.0 * u * v
            + 4.0 * u * u
        )
        result = (2.0 * n + 2.0 * u - w - A) / 4.0 / denom
        if math.isnan(result):
            return 0.5
        return float(np.clip(result, 0.0, 0.5))


class RILSibMultiway(MultiwayRIL):
    """RIL by sib mating from 4 or 8 founders (map expansion 6r or 7r)."""

    mating = "risib"

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability; every founder switch is equally likely."""
        r = rec_frac
        denom = math.log(1.0 + 6.0 * r)
        if self.n_founders == 4:
            if gen_left == gen_right:
                return -denom
            return math.log(2.0) + safe_log(r) - denom
        if gen_left == gen_right:
            return safe_log(1.0 - r) - denom
        return safe_log(r) - denom


class GeneralRIL(FounderGenoCross):
    """n-way RIL by sib mating with founder proportions given by cross_info weights."""

    partial_calls_match = False

    def __init__(self, n_founders):
        """Initialize a general RIL with n founders."""
        self.n_founders = n_founders
        self.n_crossinfo = n_founders
        self.crosstype = f"genril{n_founders}"

    def n_genotypes(self, is_x_chr=False):
        """One homozygous genotype per founder."""
        return self.n_founders

    def founder_alleles(self, gen):
        """A homozygous line carries a single founder."""
        return [gen - 1]

    def founder_freqs(self, cross_info):
        """Founder proportions from the cross_info weights."""
        w = np.asarray(cross_info, dtype=np.float64)
        return w / np.sum(w)

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Log founder proportion."""
        return safe_log(self.founder_freqs(cross_info)[gen - 1])

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Switch to founder j with probability 8 alpha_j r / (1 + 6r)."""
        alpha = self.founder_freqs(cross_info)
        r = rec_frac
        switch = 8.0 * r / (1.0 + 6.0 * r)
        if gen_left == gen_right:
            return safe_log(1.0 - switch * (1.0 - alpha[gen_left - 1]))
        return safe_log(switch * alpha[gen_right - 1])

    def geno_names(self, alleles=None, is_x_chr=False):
        """Doubled allele labels."""
        alleles = alleles or ALLELE_LABELS
        if len(alleles) < self.n_founders:
            raise ValueError(f"alleles must have length {self.n_founders}")
        return [alleles[i] + alleles[i] for i in range(self.n_founders)]

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """Each row holds non-negative founder weights with a positive total."""
        cross_info = _as_matrix(cross_info)
        n = self.n_founders
        if cross_info.shape[1] != n:
            raise ValueError(
                f"cross_info should have {n} columns, the founder weights"
            )
        if np.any(cross_info < 0):
            raise ValueError("cross_info has missing or negative values")
        if np.any(np.sum(cross_info, axis=1) <= 0):
            raise ValueError("cross_info rows should have a positive total weight")
        return True


class OutbredCross(FounderGenoCross):
    """Diploid intercross populations built from n founder haplotypes.

    Genotypes are unordered founder pairs AA, AB, BB, AC, BC, CC, ...
    An individual carries two independent haplotypes, each a Markov chain
    over founders given by `hap_matrix`.
    """

    min_generations = 1

    def __init__(self, n_founders):
        """Initialize with n founders and the unordered-pair state space."""
        self.n_founders = n_founders
        n_geno = self.n_genotypes()
        pairs = np.array([decode_pair(g) for g in range(1, n_geno + 1)])
        self._left = pairs[:, 0]
        self._right = pairs[:, 1]

    def n_genotypes(self, is_x_chr=False):
        """All unordered founder pairs."""
        return self.n_founders * (self.n_founders + 1) // 2

    def founder_alleles(self, gen):
        """The two founders of a genotype."""
        i, j = decode_pair(gen)
        return [i, j]

    def n_generations(self, cross_info):
        """Number of generations of outcrossing."""
        return int(cross_info[0])

    def founder_freqs(self, cross_info):
        """Founder proportions; equal unless overridden."""
        return np.repeat(1.0 / self.n_founders, self.n_founders)

    def hap_matrix(self, rec_frac, cross_info):
        """Founder-to-founder transition matrix along one haplotype."""
        raise NotImplementedError

    def init_prob(self, gen, is_x_chr=False, is_female=True, cross_info=()):
        """Hardy-Weinberg proportions in the founder frequencies."""
        alpha = self.founder_freqs(cross_info)
        i, j = decode_pair(gen)
        p = alpha[i] * alpha[j]
        if i != j:
            p *= 2.0
        return safe_log(p)

    def _pair_step(self, H, li, ri, lj, rj):
        p = H[li, lj] * H[ri, rj]
        p = np.where(lj != rj, p + H[li, rj] * H[ri, lj], p)
        return p

    def step_prob(
        self, gen_left, gen_right, rec_frac, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition probability summing over the two phases."""
        H = self.hap_matrix(rec_frac, cross_info)
        i, j = decode_pair(gen_left)
        k, l = decode_pair(gen_right)
        p = H[i, k] * H[j, l]
        if k != l:
            p += H[i, l] * H[j, k]
        return safe_log(p)

    def step_matrix(
        self, rec_frac, states, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition matrix, vectorised over the founder pairs."""
        H = self.hap_matrix(rec_frac, cross_info)
        idx = np.asarray(states) - 1
        li, ri = self._left[idx][:, None], self._right[idx][:, None]
        lj, rj = self._left[idx][None, :], self._right[idx][None, :]
        p = self._pair_step(H, li, ri, lj, rj)
        with np.errstate(divide="ignore"):
            return np.log(p)

    def nrec(self, gen_left, gen_right, is_x_chr=False, is_female=True, cross_info=()):
        """Fewest haplotype switches between the two founder pairs."""
        i, j = decode_pair(gen_left)
        k, l = decode_pair(gen_right)
        return min(int(i != k) + int(j != l), int(i != l) + int(j != k))

    def geno_names(self, alleles=None, is_x_chr=False):
        """Pairs of allele labels in genotype-code order."""
        alleles = alleles or ALLELE_LABELS
        if len(alleles) < self.n_founders:
            raise ValueError(f"alleles must have length {self.n_founders}")
        return [
            alleles[decode_pair(g)[0]] + alleles[decode_pair(g)[1]]
            for g in range(1, self.n_genotypes() + 1)
        ]

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """One column, the number of generations."""
        cross_info = _as_matrix(cross_info)
        if cross_info.shape[1] != self.n_crossinfo:
            raise ValueError(
                f"cross_info for {self.crosstype} should have {self.n_crossinfo} columns"
            )
        if np.any(cross_info[:, 0] < self.min_generations):
            raise ValueError(
                f"cross_info has invalid values; number of generations should be >= {self.min_generations}"
            )
        return True


class AdvancedIntercross(OutbredCross):
    """Two-way advanced intercross lines (Darvasi and Soller 1995).

    Observed codes are genotypes directly, so no founder genotypes are needed.
    """

    crosstype = "ail"
    n_crossinfo = 1
    min_generations = 2
    need_founder_geno = False
    implicit_founder_geno = np.array([1, 3])

    def __init__(self):
        """Initialize a two-way AIL."""
        super().__init__(n_founders=2)

    def _switch(self, rec_frac, cross_info):
        k = self.n_generations(cross_info)
        return 1.0 - (1.0 - 2.0 * rec_frac) * (1.0 - rec_frac) ** (k - 2)

    def hap_matrix(self, rec_frac, cross_info):
        """Haplotype recombinant fraction 1/2 [1 - (1 - 2r)(1 - r)^(k-2)]."""
        alpha = self.founder_freqs(cross_info)
        Q = self._switch(rec_frac, cross_info)
        H = np.tile(alpha * Q, (self.n_founders, 1))
        np.fill_diagonal(H, 0.0)
        H[np.diag_indices_from(H)] = 1.0 - H.sum(axis=1)
        return H

    def geno_names(self, alleles=None, is_x_chr=False):
        """Genotype labels from the two allele labels."""
        a, b = (alleles or ALLELE_LABELS)[:2]
        return [a + a, a + b, b + b]


class GeneralAIL(AdvancedIntercross):
    """n-way advanced intercross with founder proportions.

    cross_info holds the number of generations followed by n founder weights.
    """

    need_founder_geno = True
    implicit_founder_geno = None

    def __init__(self, n_founders):
        """Initialize an n-way AIL."""
        OutbredCross.__init__(self, n_founders=n_founders)
        self.n_crossinfo = n_founders + 1
        self.crosstype = f"genail{n_founders}"

    def founder_freqs(self, cross_info):
        """Founder proportions from the cross_info weights."""
        w = np.asarray(cross_info[1:], dtype=np.float64)
        return w / np.sum(w)

    def geno_names(self, alleles=None, is_x_chr=False):
        """Pairs of allele labels in genotype-code order."""
        return OutbredCross.geno_names(self, alleles, is_x_chr)

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """Generations then non-negative founder weights with a positive total."""
        super().check_crossinfo(cross_info, any_x_chr)
        cross_info = _as_matrix(cross_info)
        weights = cross_info[:, 1:]
        if np.any(weights < 0):
            raise ValueError("cross_info has missing or negative founder weights")
        if np.any(np.sum(weights, axis=1) <= 0):
            raise ValueError("cross_info rows should have a positive total weight")
        return True


class HeterogeneousStock(GeneralAIL):
    """Eight-way heterogeneous stock; equal founders and cross_info = generations."""

    def __init__(self):
        """Initialize an eight-founder heterogeneous stock."""
        super().__init__(n_founders=8)
        self.n_crossinfo = 1
        self.crosstype = "hs"

    def founder_freqs(self, cross_info):
        """Equal founder proportions."""
        return np.repeat(1.0 / self.n_founders, self.n_founders)

    def check_crossinfo(self, cross_info, any_x_chr=False):
        """One column, the number of generations."""
        return OutbredCross.check_crossinfo(self, cross_info, any_x_chr)


class DiversityOutbred(OutbredCross):
    """Diversity Outbred mice: random outcrossing of pre-CC lines.

    A haplotype starts as an eight-way sib-mated line (founder switch
    probability r / (1 + 6r) each) and its linkage with other founders
    decays by (1 - r) for each of the k generations in cross_info.
    """

    crosstype = "do"
    n_crossinfo = 1
    min_generations = 1

    def __init__(self):
        """Initialize the eight-founder DO model."""
        super().__init__(n_founders=8)

    def hap_matrix(self, rec_frac, cross_info):
        """Founder transition matrix after k generations of outcrossing."""
        n = self.n_founders
        r = rec_frac
        k = self.n_generations(cross_info)
        start = r / (1.0 + 6.0 * r)
        off = 1.0 / n - (1.0 / n - start) * (1.0 - r) ** k
        H = np.full(shape=(n, n), fill_value=off)
        np.fill_diagonal(H, 1.0 - (n - 1) * off)
        return H


# --- registry of cross types --- #
CROSSTYPES = {
    "bc": Backcross,
    "f2": Intercross,
    "riself": RILSelf,
    "risib": RILSib,
    "dh": DoubledHaploid,
    "haploid": Haploid,
    "riself4": lambda: RILSelfMultiway(4),
    "riself8": lambda: RILSelfMultiway(8),
    "riself16": lambda: RILSelfMultiway(16),
    "risib4": lambda: RILSibMultiway(4),
    "risib8": lambda: RILSibMultiway(8),
    "ail": AdvancedIntercross,
    "do": DiversityOutbred,
    "hs": HeterogeneousStock,
}

GENERAL_CROSSTYPES = {"genril": GeneralRIL, "genail": GeneralAIL}


def list_crosstypes():
    """Names of the registered cross types (general n-way types as templates)."""
    return sorted(CROSSTYPES) + [f"{x}<n>" for x in sorted(GENERAL_CROSSTYPES)]


def get_crosstype(crosstype):
    """Instantiate the model registered for a cross type name.

    Arguments:
        - crosstype (`str`): e.g. "bc", "f2", "riself8", "do", "genail12"

    Returns:
        - cross (`CrossType`): the cross-type model

    """
    if isinstance(crosstype, CrossType):
        return crosstype
    if crosstype in CROSSTYPES:
        return CROSSTYPES[crosstype]()
    match = re.fullmatch(r"(genril|genail)(\d+)", str(crosstype))
    if match is not None:
        n = int(match.group(2))
        if n < 2 or n > len(ALLELE_LABELS):
            raise ValueError(
                f"{crosstype}: number of founders should be in 2..{len(ALLELE_LABELS)}"
            )
        return GENERAL_CROSSTYPES[match.group(1)](n)
    raise ValueError(
        f"Cross type {crosstype} is not supported; choose from {', '.join(list_crosstypes())}"
    )
