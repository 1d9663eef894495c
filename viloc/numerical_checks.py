#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Numerical Validation Module
===========================

Tripwires for NaN/inf propagation and covariance health checks used by the
error-state filter.
"""

import numpy as np


def assert_finite(name, M, t=None, raise_on_fail=False):
    """
    Tripwire: Check matrix/vector for inf/nan and dump diagnostics if found.

    Parameters:
    -----------
    name : str
        Descriptive name of the quantity being checked
    M : np.ndarray
        Matrix or vector to validate
    t : int, optional
        Timestamp [ns] for logging context
    raise_on_fail : bool
        If True, raises ValueError on failure. If False, only prints warning.

    Returns:
    --------
    bool : True if finite, False if inf/nan detected
    """
    if M is None:
        print(f"[TRIPWIRE] {name}: is None!")
        return False

    M = np.asarray(M, dtype=float)
    if np.all(np.isfinite(M)):
        return True

    print(f"[TRIPWIRE] NaN/inf detected in {name} (shape={M.shape}) at t={t}")
    if np.any(np.isnan(M)):
        print(f"  NaN locations (first 10): {np.argwhere(np.isnan(M))[:10].tolist()}")
    if np.any(np.isinf(M)):
        print(f"  Inf locations (first 10): {np.argwhere(np.isinf(M))[:10].tolist()}")

    if raise_on_fail:
        raise ValueError(f"NaN/inf detected in {name}")
    return False


def check_quaternion(q, name="quaternion", normalize=True, t=None):
    """
    Validate quaternion and optionally normalize.

    Returns:
    --------
    q_out : np.ndarray
        Validated (and possibly normalized) quaternion
    is_valid : bool
        True if quaternion is valid
    """
    q = np.asarray(q, dtype=float)
    if not assert_finite(name, q, t=t):
        return q, False

    q_norm = np.linalg.norm(q)
    if q_norm < 1e-8:
        print(f"[TRIPWIRE] {name}: norm near zero ({q_norm:.6e}) at t={t}")
        return q, False

    if normalize:
        return q / q_norm, True
    return q, True


def check_covariance_psd(P, name="covariance", min_eigenvalue=1e-12, t=None):
    """
    Validate covariance matrix is symmetric positive semi-definite.

    Returns:
    --------
    is_valid : bool
        True if PSD, False otherwise
    """
    if not assert_finite(name, P, t=t):
        return False

    if not np.allclose(P, P.T, rtol=1e-5, atol=1e-12):
        asymmetry = np.max(np.abs(P - P.T))
        print(f"[TRIPWIRE] {name}: not symmetric (max diff={asymmetry:.6e}) at t={t}")
        return False

    try:
        eigvals = np.linalg.eigvalsh(P)
    except np.linalg.LinAlgError:
        print(f"[TRIPWIRE] {name}: eigenvalue computation failed at t={t}")
        return False

    min_eig = float(eigvals[0])
    if min_eig < -min_eigenvalue:
        print(f"[TRIPWIRE] {name}: negative eigenvalue ({min_eig:.6e}) at t={t}")
        return False
    return True


def ensure_covariance_valid(P: np.ndarray, label: str = "",
                            symmetrize: bool = True,
                            check_psd: bool = True,
                            min_eigenvalue: float = 1e-12,
                            verbose: bool = False) -> np.ndarray:
    """
    Ensure covariance matrix is valid (symmetric + positive semi-definite).

    Numerical errors in the simplified update P -= K H P can cause:
    1. Asymmetry: P != P^T (floating-point rounding)
    2. Negative eigenvalues: loss of PSD property

    Args:
        P: Covariance matrix (n×n)
        label: Debug label for logging
        symmetrize: Force symmetry
        check_psd: Check and fix negative eigenvalues
        min_eigenvalue: Minimum allowed eigenvalue
        verbose: Print a line for every correction

    Returns:
        P_valid: Fixed covariance matrix
    """
    n = P.shape[0]

    if symmetrize:
        asymmetry = np.linalg.norm(P - P.T, ord='fro')
        if verbose and asymmetry > 1e-6:
            print(f"[COV_CHECK] {label}: Asymmetry detected (||P - P^T|| = {asymmetry:.3e}), symmetrizing")
        P = (P + P.T) / 2.0

    if check_psd:
        try:
            lambda_min = float(np.linalg.eigvalsh(P)[0])
        except np.linalg.LinAlgError as e:
            print(f"[COV_CHECK] {label}: Eigenvalue computation failed: {e}")
            return P + 1e-6 * np.eye(n, dtype=float)

        if lambda_min < min_eigenvalue:
            jitter = abs(lambda_min) + min_eigenvalue
            if verbose:
                print(f"[COV_CHECK] {label}: Negative eigenvalue λ_min = {lambda_min:.3e}, "
                      f"adding jitter ε = {jitter:.3e}")
            P = P + jitter * np.eye(n, dtype=float)

    return P
