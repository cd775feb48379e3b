"""
Genotype HMM for experimental crosses.

CrossHMM implements the multipoint genotype reconstruction methods
shared by all cross designs:

- forward-backward genotype probabilities (calc_genoprob)
- Viterbi decoding of the most probable genotype path (viterbi)
- EM re-estimation of the genetic map (est_map)

The cross-specific probability laws are supplied by a `CrossType`
from `crosshmm.crosses`; the recursions run in `crosshmm_utils`.

"""

import logging
import warnings
from concurrent.futures import ProcessPoolExecutor, as_completed

import numpy as np
from crosshmm_utils import backward_algo, forward_algo, viterbi_algo
from scipy.optimize import minimize_scalar

from .crosses import get_crosstype
from .maps import check_map, positions_to_rec_frac, rec_frac_to_positions


class ComputationInterrupted(Exception):
    """Raised when a computation is cancelled through its stop_event."""


def _check_stop(stop_event):
    if stop_event is not None and stop_event.is_set():
        raise ComputationInterrupted("computation interrupted by user request")


class GenoProbs(dict):
    """Genotype probabilities by chromosome.

    Each value is an n_ind x n_gen x n_pos array; genotype code g is found in
    column g - 1. `failures` maps a chromosome to the individuals whose
    probabilities could not be computed (filled with NaN).
    """

    def __init__(self, *args, **kwargs):
        """Initialize an empty set of genotype probabilities."""
        super().__init__(*args, **kwargs)
        self.geno_names = {}
        self.positions = {}
        self.failures = {}


class ViterbiPaths(dict):
    """Most probable genotype codes by chromosome (n_ind x n_pos, -1 on failure)."""

    def __init__(self, *args, **kwargs):
        """Initialize an empty set of Viterbi paths."""
        super().__init__(*args, **kwargs)
        self.positions = {}
        self.failures = {}


# --- per-unit workers (module level so they can be sent to worker processes) --- #
def _posterior(init, emit, trans):
    """Posterior genotype probabilities (k x m) or None on numerical failure."""
    alphas, loglik = forward_algo(init, emit, trans)
    if not np.isfinite(loglik):
        return None
    betas, _ = backward_algo(init, emit, trans)
    with np.errstate(invalid="ignore", over="ignore"):
        probs = np.exp(alphas + betas - loglik)
        probs /= probs.sum(axis=0)
    if not np.all(np.isfinite(probs)):
        return None
    return probs


def _viterbi_path(init, emit, trans):
    """State indices of the best path or None on numerical failure."""
    path, deltas, _ = viterbi_algo(init, emit, trans)
    if not np.isfinite(np.max(deltas[:, -1])):
        return None
    return path


def _pair_posteriors(init, emit, trans):
    """Log-likelihood and summed adjacent-pair posteriors ((m-1) x k x k)."""
    alphas, loglik = forward_algo(init, emit, trans)
    if not np.isfinite(loglik):
        return loglik, None
    betas, _ = backward_algo(init, emit, trans)
    right = (emit[:, 1:] + betas[:, 1:]).T
    xi = alphas[:, :-1].T[:, :, None] + trans + right[:, None, :] - loglik
    return loglik, np.exp(xi)


def _run_batch(func, units):
    return [func(*u) for u in units]


def _estimate_chrom(hmm, chrom, model, max_iterations, tol, verbose, fast):
    # warnings raised in a worker process are returned for the caller to re-issue
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        res = hmm._em_chrom(chrom, model, max_iterations, tol, verbose, None, fast)
    return res, [(str(w.message), w.category) for w in caught]


class CrossHMM:
    """HMM for multipoint genotype reconstruction in an experimental cross."""

    def __init__(self, crosstype="bc", error_prob=1e-4, map_function="haldane", cores=1):
        """Initialize the HMM for a cross design.

        Arguments:
            - crosstype (`str`): registered cross type name (e.g. "bc", "riself8", "do")
            - error_prob (`float`): genotyping error probability
            - map_function (`str`): map function relating cM to recombination fractions
            - cores (`int`): number of worker processes

        """
        if (error_prob < 0) or (error_prob >= 1):
            raise ValueError("error_prob should be in [0, 1)")
        if cores < 1:
            raise ValueError("cores should be >= 1")
        self.cross = get_crosstype(crosstype)
        self.crosstype = self.cross.crosstype
        self.error_prob = error_prob
        self.map_function = map_function
        self.cores = int(cores)

    # --- model arrays --- #
    def emission_tables(
        self, states, n_pos, founder_geno=None, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log emission lookup of shape (n_pos x n_codes x k) indexed by observed code."""
        cross = self.cross
        if not cross.need_founder_geno:
            table = cross.emit_table(
                self.error_prob, states, None, is_x_chr, is_female, cross_info
            )
            return np.broadcast_to(table, (n_pos,) + table.shape)
        assert founder_geno is not None
        founder_geno = np.asarray(founder_geno)
        assert founder_geno.shape[1] == n_pos
        cache = {}
        tables = []
        for t in range(n_pos):
            key = tuple(founder_geno[:, t])
            if key not in cache:
                cache[key] = cross.emit_table(
                    self.error_prob, states, key, is_x_chr, is_female, cross_info
                )
            tables.append(cache[key])
        return np.stack(tables)

    def transition_array(
        self, rec_frac, states, is_x_chr=False, is_female=True, cross_info=()
    ):
        """Log transition matrices, one per interval ((m-1) x k x k)."""
        k = len(states)
        if len(rec_frac) == 0:
            return np.zeros(shape=(0, k, k), dtype=np.float64)
        return np.stack(
            [
                self.cross.step_matrix(r, states, is_x_chr, is_female, cross_info)
                for r in rec_frac
            ]
        )

    def model_arrays(
        self,
        geno,
        rec_frac,
        founder_geno=None,
        is_x_chr=False,
        is_female=True,
        cross_info=(),
    ):
        """Initial, emission and transition log-probabilities for one individual.

        Arguments:
            - geno (`np.array`): m-length observed genotype codes (0 = missing)
            - rec_frac (`np.array`): m-1 recombination fractions between positions
            - founder_geno (`np.array`): n_founders x m founder genotypes
            - is_x_chr (`bool`): whether the chromosome is the X chromosome
            - is_female (`bool`): sex of the individual
            - cross_info (`tuple`): cross information for the individual

        Returns:
            - states (`list`): genotype codes of the k hidden states
            - init (`np.array`): k-length log initial probabilities
            - emit (`np.array`): k x m log emission probabilities
            - trans (`np.array`): (m-1) x k x k log transition probabilities

        """
        geno = np.asarray(geno, dtype=int)
        assert geno.ndim == 1
        assert len(rec_frac) == geno.size - 1
        cross_info = tuple(cross_info)
        states = self.cross.possible_genotypes(is_x_chr, is_female, cross_info)
        init = self.cross.init_vector(states, is_x_chr, is_female, cross_info)
        tables = self.emission_tables(
            states, geno.size, founder_geno, is_x_chr, is_female, cross_info
        )
        emit = _emissions(tables, geno)
        trans = self.transition_array(
            rec_frac, states, is_x_chr, is_female, cross_info
        )
        return states, init, emit, trans

    # --- single-individual algorithms --- #
    def forward_algorithm(self, geno, rec_frac, **kwargs):
        """Forward algorithm for a single individual.

        Arguments:
            - geno (`np.array`): m-length observed genotype codes (0 = missing)
            - rec_frac (`np.array`): m-1 recombination fractions between positions
            - kwargs: founder_geno, is_x_chr, is_female and cross_info

        Returns:
            - alphas (`np.array`): k x m forward log-probabilities
            - states (`list`): genotype codes of the hidden states
            - loglik (`float`): log-likelihood of the observed genotypes

        """
        states, init, emit, trans = self.model_arrays(geno, rec_frac, **kwargs)
        alphas, loglik = forward_algo(init, emit, trans)
        return alphas, states, loglik

    def backward_algorithm(self, geno, rec_frac, **kwargs):
        """Backward algorithm for a single individual.

        Returns:
            - betas (`np.array`): k x m backward log-probabilities
            - states (`list`): genotype codes of the hidden states
            - loglik (`float`): log-likelihood of the observed genotypes

        """
        states, init, emit, trans = self.model_arrays(geno, rec_frac, **kwargs)
        betas, loglik = backward_algo(init, emit, trans)
        return betas, states, loglik

    def forward_backward(self, geno, rec_frac, **kwargs):
        """Posterior genotype probabilities for a single individual.

        Returns:
            - gammas (`np.array`): k x m log posterior probabilities
            - states (`list`): genotype codes of the hidden states
            - loglik (`float`): log-likelihood of the observed genotypes

        """
        states, init, emit, trans = self.model_arrays(geno, rec_frac, **kwargs)
        alphas, loglik = forward_algo(init, emit, trans)
        betas, _ = backward_algo(init, emit, trans)
        gammas = alphas + betas - loglik
        return gammas, states, loglik

    def viterbi_algorithm(self, geno, rec_frac, **kwargs):
        """Most probable genotype path for a single individual.

        Returns:
            - path (`np.array`): m-length genotype codes of the best path
            - states (`list`): genotype codes of the hidden states
            - deltas (`np.array`): k x m maximal path log-probabilities
            - psi (`np.array`): k x m best-predecessor state indices

        """
        states, init, emit, trans = self.model_arrays(geno, rec_frac, **kwargs)
        path, deltas, psi = viterbi_algo(init, emit, trans)
        return np.asarray(states)[path], states, deltas, psi

    # --- validation --- #
    def validate(self, data):
        """Check a `CrossData` object against the cross model.

        Raises `ValueError` with a diagnostic for invalid input and warns for
        recoverable issues. Returns whether the X chromosome is modelled.
        """
        cross = self.cross
        if data.crosstype != self.crosstype:
            raise ValueError(
                f"crosstype of data ({data.crosstype}) does not match the HMM ({self.crosstype})"
            )
        n_ind = data.n_ind
        if len(data.is_female) != n_ind:
            raise ValueError("is_female should have one entry per individual")
        if data.cross_info.shape[0] != n_ind:
            raise ValueError("cross_info should have one row per individual")
        any_x_chr = any(data.is_x_chr[c] for c in data.chrom_names)
        cross.check_crossinfo(data.cross_info, any_x_chr)
        handle_x = cross.check_handle_x_chr(any_x_chr)
        codes = np.array(cross.observed_codes)
        unused_founder_geno = False
        for c in data.chrom_names:
            geno = data.geno[c]
            if geno.ndim != 2 or geno.shape[0] != n_ind:
                raise ValueError(f"geno for chr {c} should be an n_ind x n_markers matrix")
            if geno.shape[1] == 0:
                raise ValueError(f"chr {c} has no markers")
            bad = ~np.isin(geno, codes)
            if np.any(bad):
                raise ValueError(
                    f"geno for chr {c} has invalid values {np.unique(geno[bad]).tolist()}; "
                    f"should be in {codes.tolist()}"
                )
            pos = data.gmap.get(c)
            if pos is None:
                raise ValueError(f"map is missing chr {c}")
            check_map(pos, chrom=c)
            if len(pos) != geno.shape[1]:
                raise ValueError(f"map and geno for chr {c} have different numbers of markers")
            founder_geno = data.founder_geno.get(c)
            if cross.need_founder_geno:
                if founder_geno is None:
                    raise ValueError(f"founder_geno for chr {c} is required for {self.crosstype}")
                cross.check_founder_geno_size(founder_geno, geno.shape[1])
                cross.check_founder_geno_values(founder_geno)
            elif founder_geno is not None:
                unused_founder_geno = True
        if unused_founder_geno:
            warnings.warn(
                f"founder_geno not needed for {self.crosstype}; ignored.", UserWarning
            )
        return handle_x

    # --- grouping by breeding history --- #
    def _chrom_groups(self, data, chrom, is_x_chr):
        """Individuals grouped by the context that fixes their model arrays."""
        groups = {}
        for i in range(data.n_ind):
            is_female = bool(data.is_female[i]) if is_x_chr else True
            key = (is_female, tuple(int(x) for x in data.cross_info[i]))
            groups.setdefault(key, []).append(i)
        return groups

    def _chrom_model(self, data, chrom, handle_x, rec_frac=None):
        """Per-group model arrays for one chromosome."""
        is_x_chr = bool(data.is_x_chr[chrom]) and handle_x
        if rec_frac is None:
            rec_frac = positions_to_rec_frac(data.gmap[chrom], self.map_function)
        n_pos = data.geno[chrom].shape[1]
        founder_geno = data.founder_geno.get(chrom) if self.cross.need_founder_geno else None
        model = {
            "chrom": chrom,
            "is_x_chr": is_x_chr,
            "geno": data.geno[chrom],
            "pos": np.asarray(data.gmap[chrom], dtype=np.float64),
            "rec_frac": rec_frac,
            "groups": [],
        }
        for (is_female, cross_info), inds in self._chrom_groups(
            data, chrom, is_x_chr
        ).items():
            states = self.cross.possible_genotypes(is_x_chr, is_female, cross_info)
            model["groups"].append(
                {
                    "is_female": is_female,
                    "cross_info": cross_info,
                    "inds": inds,
                    "states": states,
                    "init": self.cross.init_vector(
                        states, is_x_chr, is_female, cross_info
                    ),
                    "tables": self.emission_tables(
                        states, n_pos, founder_geno, is_x_chr, is_female, cross_info
                    ),
                    "trans": self.transition_array(
                        rec_frac, states, is_x_chr, is_female, cross_info
                    ),
                }
            )
        return model

    def _units(self, model):
        """(index, group, (init, emit, trans)) for every individual of a chromosome."""
        for group in model["groups"]:
            for i in group["inds"]:
                emit = _emissions(group["tables"], model["geno"][i])
                yield i, group, (group["init"], emit, group["trans"])

    def _dispatch(self, func, units, stop_event=None):
        """Apply a per-unit worker in-process or across a process pool."""
        if self.cores <= 1 or len(units) < 2:
            results = []
            for u in units:
                _check_stop(stop_event)
                results.append(func(*u))
            return results
        batches = [b for b in np.array_split(np.arange(len(units)), self.cores) if b.size > 0]
        results = [None] * len(units)
        with ProcessPoolExecutor(max_workers=self.cores) as executor:
            future_to_batch = {
                executor.submit(_run_batch, func, [units[j] for j in b]): b
                for b in batches
            }
            for future in as_completed(future_to_batch):
                if stop_event is not None and stop_event.is_set():
                    for f in future_to_batch:
                        f.cancel()
                    raise ComputationInterrupted("computation interrupted by user request")
                for j, res in zip(future_to_batch[future], future.result()):
                    results[j] = res
        return results

    # --- cross-wide computations --- #
    def calc_genoprob(self, data, stop_event=None):
        """Genotype probabilities for every individual on every chromosome.

        Arguments:
            - data (`CrossData`): genotypes, map and covariates of the cross
            - stop_event (`threading.Event`): optional, set to interrupt the computation

        Returns:
            - probs (`GenoProbs`): chr -> n_ind x n_gen x n_pos probability arrays

        """
        handle_x = self.validate(data)
        probs = GenoProbs()
        keys, units = [], []
        models = {}
        for c in data.chrom_names:
            _check_stop(stop_event)
            models[c] = self._chrom_model(data, c, handle_x)
            n_gen = self.cross.n_genotypes(models[c]["is_x_chr"])
            n_pos = models[c]["geno"].shape[1]
            probs[c] = np.zeros(shape=(data.n_ind, n_gen, n_pos), dtype=np.float64)
            probs.geno_names[c] = self.cross.geno_names(
                data.alleles, models[c]["is_x_chr"]
            )
            probs.positions[c] = models[c]["pos"]
            probs.failures[c] = []
            for i, group, unit in self._units(models[c]):
                keys.append((c, i, group["states"]))
                units.append(unit)
        results = self._dispatch(_posterior, units, stop_event)
        for (c, i, states), res in zip(keys, results):
            cols = np.asarray(states) - 1
            if res is None:
                probs[c][i, :, :] = np.nan
                probs.failures[c].append(i)
            else:
                probs[c][i, cols, :] = res
        _warn_failures(probs.failures, "genotype probabilities")
        return probs

    def viterbi(self, data, stop_event=None):
        """Most probable genotype path for every individual on every chromosome.

        Returns:
            - paths (`ViterbiPaths`): chr -> n_ind x n_pos genotype codes

        """
        handle_x = self.validate(data)
        paths = ViterbiPaths()
        keys, units = [], []
        for c in data.chrom_names:
            _check_stop(stop_event)
            model = self._chrom_model(data, c, handle_x)
            paths[c] = np.zeros(shape=data.geno[c].shape, dtype=int)
            paths.positions[c] = model["pos"]
            paths.failures[c] = []
            for i, group, unit in self._units(model):
                keys.append((c, i, group["states"]))
                units.append(unit)
        results = self._dispatch(_viterbi_path, units, stop_event)
        for (c, i, states), res in zip(keys, results):
            if res is None:
                paths[c][i, :] = -1
                paths.failures[c].append(i)
            else:
                paths[c][i, :] = np.asarray(states)[res]
        _warn_failures(paths.failures, "Viterbi paths")
        return paths

    # --- map estimation --- #
    def _em_counts(self, model, fast=True):
        """E-step: total log-likelihood and expected transition counts per interval.

        Returns the log-likelihood, a list of per-context (gamma, states,
        cross context) tuples and the individuals that failed.
        """
        is_x_chr = model["is_x_chr"]
        loglik = 0.0
        counts = []
        failed = []
        for group in model["groups"]:
            states = group["states"]
            ctx = (is_x_chr, group["is_female"], group["cross_info"])
            if fast:
                trans = self.transition_array(model["rec_frac"], states, *ctx)
            gamma = None
            for i in group["inds"]:
                if not fast:
                    trans = self.transition_array(model["rec_frac"], states, *ctx)
                emit = _emissions(group["tables"], model["geno"][i])
                ll, xi = _pair_posteriors(group["init"], emit, trans)
                if xi is None or not np.all(np.isfinite(xi)):
                    failed.append(i)
                    continue
                loglik += ll
                if fast:
                    gamma = xi if gamma is None else gamma + xi
                else:
                    counts.append((xi, states) + ctx)
            if fast and gamma is not None:
                counts.append((gamma, states) + ctx)
        return loglik, counts, failed

    def _expected_loglik(self, r, interval, counts):
        q = 0.0
        for gamma, states, is_x_chr, is_female, cross_info in counts:
            g = gamma[interval]
            logp = self.cross.step_matrix(r, states, is_x_chr, is_female, cross_info)
            q += np.sum(g * np.where(g > 0, logp, 0.0))
        return q

    def _m_step(self, rec_frac, counts, tol):
        """Update each recombination fraction given the expected counts."""
        new_rec_frac = rec_frac.copy()
        for t in range(rec_frac.size):
            interval_counts = [
                (gamma[t], states, is_x_chr, is_female, cross_info)
                for gamma, states, is_x_chr, is_female, cross_info in counts
            ]
            r = self.cross.est_rec_frac(interval_counts)
            if r is None:
                opt_res = minimize_scalar(
                    lambda x: -self._expected_loglik(x, t, counts),
                    bounds=(0.0, 0.5),
                    method="bounded",
                    options={"xatol": max(tol, 1e-10)},
                )
                r = float(opt_res.x)
            # generalised EM: never accept a decrease of the expected log-likelihood
            if self._expected_loglik(r, t, counts) < self._expected_loglik(
                rec_frac[t], t, counts
            ):
                r = rec_frac[t]
            new_rec_frac[t] = r
        return new_rec_frac

    def _em_chrom(self, chrom, model, max_iterations, tol, verbose, stop_event=None, fast=True):
        """EM iterations for the recombination fractions of one chromosome."""
        rec_frac = np.asarray(model["rec_frac"], dtype=np.float64)
        loglik_trace = []
        converged = False
        failed = []
        n_iter = 0
        for n_iter in range(1, max_iterations + 1):
            _check_stop(stop_event)
            model["rec_frac"] = rec_frac
            loglik, counts, failed = self._em_counts(model, fast=fast)
            loglik_trace.append(loglik)
            if verbose:
                logging.info(f"chr {chrom} iteration {n_iter}: loglik = {loglik:.6f}")
            if (len(loglik_trace) > 1) and (loglik_trace[-1] - loglik_trace[-2] < tol):
                converged = True
                break
            if rec_frac.size == 0 or not counts:
                converged = True
                break
            # the returned map is always the one the last E-step evaluated
            if n_iter == max_iterations:
                break
            rec_frac = self._m_step(rec_frac, counts, tol)
        if not converged:
            warnings.warn(
                f"est_map for chr {chrom} did not converge in {max_iterations} iterations",
                RuntimeWarning,
            )
        return {
            "rec_frac": rec_frac,
            "positions": rec_frac_to_positions(
                rec_frac, start=model["pos"][0], map_function=self.map_function
            ),
            "loglik": loglik_trace[-1] if loglik_trace else np.nan,
            "converged": converged,
            "n_iter": n_iter,
            "loglik_trace": np.array(loglik_trace),
            "failures": failed,
        }

    def est_map(
        self,
        data,
        max_iterations=10000,
        tol=1e-6,
        verbose=False,
        fast=True,
        stop_event=None,
    ):
        """Re-estimate the inter-marker recombination fractions by EM.

        Arguments:
            - data (`CrossData`): genotypes, map and covariates of the cross
            - max_iterations (`int`): maximum number of EM iterations per chromosome
            - tol (`float`): stop once the log-likelihood improves by less than tol
            - verbose (`bool`): log the log-likelihood at each iteration
            - fast (`bool`): share transition tables across individuals with the same cross_info
            - stop_event (`threading.Event`): optional, set to interrupt the computation

        Returns:
            - est (`dict`): chr -> dict with rec_frac, positions (cM), loglik,
              converged, n_iter, loglik_trace and failures

        """
        assert max_iterations > 0
        assert tol > 0
        handle_x = self.validate(data)
        models = {}
        for c in data.chrom_names:
            _check_stop(stop_event)
            models[c] = self._chrom_model(data, c, handle_x)
        if self.cores <= 1 or len(models) < 2:
            return {
                c: self._em_chrom(c, models[c], max_iterations, tol, verbose, stop_event, fast)
                for c in data.chrom_names
            }
        est = {}
        with ProcessPoolExecutor(max_workers=self.cores) as executor:
            future_to_chrom = {
                executor.submit(
                    _estimate_chrom, self, c, models[c], max_iterations, tol, verbose, fast
                ): c
                for c in data.chrom_names
            }
            for future in as_completed(future_to_chrom):
                if stop_event is not None and stop_event.is_set():
                    for f in future_to_chrom:
                        f.cancel()
                    raise ComputationInterrupted("computation interrupted by user request")
                res, caught = future.result()
                for message, category in caught:
                    warnings.warn(message, category)
                est[future_to_chrom[future]] = res
        return {c: est[c] for c in data.chrom_names}


def _emissions(tables, geno):
    """Emission log-probabilities (k x m) of an observed genotype row."""
    geno = np.asarray(geno, dtype=int)
    return np.ascontiguousarray(tables[np.arange(geno.size), geno, :].T)


def _warn_failures(failures, what):
    n_failed = sum(len(v) for v in failures.values())
    if n_failed > 0:
        warnings.warn(
            f"{what} could not be computed for {n_failed} individual x chromosome units",
            RuntimeWarning,
        )
