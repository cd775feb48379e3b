"""Map functions converting genetic distance (cM) to recombination fractions."""

import numpy as np
from scipy.optimize import brentq

MAP_FUNCTIONS = ["haldane", "kosambi", "c-f", "morgan"]


def _check_map_function(map_function):
    if map_function not in MAP_FUNCTIONS:
        raise ValueError(
            f"map_function {map_function} not supported; choose from {MAP_FUNCTIONS}"
        )


def _carter_falconer_dist(r):
    r = np.minimum(r, 0.5 - 1e-12)
    return 0.25 * (np.arctanh(2.0 * r) + np.arctan(2.0 * r))


def map_to_rec_frac(d, map_function="haldane"):
    """Convert distances in cM to recombination fractions.

    Arguments:
        - d (`np.array`): non-negative distances in cM
        - map_function (`str`): one of haldane, kosambi, c-f or morgan

    Returns:
        - r (`np.array`): recombination fractions in [0, 0.5]

    """
    _check_map_function(map_function)
    d = np.asarray(d, dtype=np.float64)
    if np.any(d < 0):
        raise ValueError("distances should be non-negative")
    morgans = d / 100.0
    if map_function == "haldane":
        return 0.5 * (1.0 - np.exp(-2.0 * morgans))
    if map_function == "kosambi":
        return 0.5 * np.tanh(2.0 * morgans)
    if map_function == "morgan":
        return np.minimum(morgans, 0.5)
    # Carter-Falconer has no closed-form inverse
    upper = 0.5 - 1e-12
    max_dist = _carter_falconer_dist(upper)
    r = np.zeros(shape=morgans.shape, dtype=np.float64)
    for idx, x in np.ndenumerate(morgans):
        if x >= max_dist:
            r[idx] = 0.5
        elif x > 0:
            r[idx] = brentq(
                lambda y: _carter_falconer_dist(y) - x, 0.0, upper, xtol=1e-14
            )
    return r


def rec_frac_to_map(r, map_function="haldane"):
    """Convert recombination fractions to distances in cM (inverse map function)."""
    _check_map_function(map_function)
    r = np.asarray(r, dtype=np.float64)
    if np.any(r < 0) or np.any(r > 0.5):
        raise ValueError("recombination fractions should be in [0, 0.5]")
    with np.errstate(divide="ignore"):
        if map_function == "haldane":
            morgans = -0.5 * np.log(1.0 - 2.0 * r)
        elif map_function == "kosambi":
            morgans = 0.25 * np.log((1.0 + 2.0 * r) / (1.0 - 2.0 * r))
        elif map_function == "morgan":
            morgans = r.copy()
        else:
            morgans = _carter_falconer_dist(r)
    # keep distances finite at r = 1/2
    morgans = np.minimum(morgans, 50.0)
    return 100.0 * morgans


def check_map(pos, chrom=""):
    """Check that marker positions are finite and non-decreasing."""
    pos = np.asarray(pos, dtype=np.float64)
    if pos.ndim != 1:
        raise ValueError(f"map for chr {chrom} should be a vector of positions")
    if not np.all(np.isfinite(pos)):
        raise ValueError(f"map for chr {chrom} has missing values")
    if np.any(np.diff(pos) < 0):
        raise ValueError(f"map for chr {chrom} is not sorted")
    return True


def positions_to_rec_frac(pos, map_function="haldane"):
    """Recombination fractions between consecutive positions.

    Duplicate positions give a recombination fraction of zero.
    """
    check_map(pos)
    return map_to_rec_frac(np.diff(np.asarray(pos, dtype=np.float64)), map_function)


def rec_frac_to_positions(rec_frac, start=0.0, map_function="haldane"):
    """Cumulative positions in cM from the recombination fractions of the intervals."""
    d = rec_frac_to_map(rec_frac, map_function)
    return start + np.concatenate([[0.0], np.cumsum(d)])


def insert_pseudomarkers(pos, step=1.0, off_end=0.0, names=None):
    """Insert evenly-spaced pseudomarkers into a map.

    Arguments:
        - pos (`np.array`): sorted marker positions in cM
        - step (`float`): spacing of the pseudomarker grid in cM
        - off_end (`float`): distance to extend the grid beyond the terminal markers
        - names (`list`): marker names (default `m<index>`)

    Returns:
        - new_pos (`np.array`): sorted positions of markers and pseudomarkers
        - new_names (`list`): names with pseudomarkers labelled `c<pos>`
        - is_marker (`np.array`): boolean mask of the original markers

    """
    assert step > 0
    assert off_end >= 0
    pos = np.asarray(pos, dtype=np.float64)
    check_map(pos)
    if names is None:
        names = [f"m{i}" for i in range(pos.size)]
    assert len(names) == pos.size
    grid = np.arange(pos[0] - off_end, pos[-1] + off_end + step / 2.0, step)
    grid = grid[grid <= pos[-1] + off_end + 1e-8]
    # drop grid points that coincide with markers
    keep = np.array([not np.any(np.isclose(g, pos)) for g in grid], dtype=bool)
    grid = grid[keep]
    new_pos = np.concatenate([pos, grid])
    is_marker = np.concatenate(
        [np.ones(pos.size, dtype=bool), np.zeros(grid.size, dtype=bool)]
    )
    new_names = list(names) + [f"c{g:.2f}" for g in grid]
    idx = np.argsort(new_pos, kind="stable")
    return new_pos[idx], [new_names[i] for i in idx], is_marker[idx]
