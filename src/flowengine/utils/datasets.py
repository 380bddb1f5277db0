"""Synthetic datasets used as fallback data and for engine smoke tests."""

from __future__ import annotations

from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

CREDIT_VARS: Dict[str, object] = {
    "feature_vars": ["income", "loan_amount", "credit_score"],
    "protected_vars": ["genderFemale", "genderMale", "age"],
    "target_var": "default",
    "protected_vars_binary": ["genderFemale", "genderMale", "age_group.<30", "age_group.30-50", "age_group.50+"],
}


def make_credit_dataset(n_rows: int = 500, seed: int = 1) -> Tuple[pd.DataFrame, Dict[str, object]]:
    """Generate a credit-scoring style frame with a binary ``default`` target."""

    rng = np.random.default_rng(seed)
    income = rng.normal(50_000, 15_000, n_rows).clip(5_000, None)
    loan_amount = rng.normal(15_000, 6_000, n_rows).clip(500, None)
    credit_score = rng.normal(650, 70, n_rows).clip(300, 850)
    female = rng.integers(0, 2, n_rows)
    age = rng.integers(18, 80, n_rows)

    logit = -2.0 + 0.00008 * loan_amount - 0.00003 * income - 0.004 * (credit_score - 650) + 0.2 * female
    default = rng.binomial(1, 1.0 / (1.0 + np.exp(-logit)))

    frame = pd.DataFrame(
        {
            "income": income,
            "loan_amount": loan_amount,
            "credit_score": credit_score,
            "genderFemale": female,
            "genderMale": 1 - female,
            "age": age,
            "age_group.<30": (age < 30).astype(int),
            "age_group.30-50": ((age >= 30) & (age <= 50)).astype(int),
            "age_group.50+": (age > 50).astype(int),
            "default": default,
        }
    )
    vars_payload = {key: list(value) if isinstance(value, list) else value for key, value in CREDIT_VARS.items()}
    return frame, vars_payload


def make_smoke_dataset(n_rows: int = 100, seed: int = 42) -> pd.DataFrame:
    """Small frame with a binary target ``y``, two features and one protected attribute ``a``."""

    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "y": rng.binomial(1, 0.5, n_rows),
            "x1": rng.normal(size=n_rows),
            "x2": rng.normal(size=n_rows),
            "a": rng.integers(0, 2, n_rows),
        }
    )


def smoke_vars() -> Dict[str, object]:
    return {"feature_vars": ["x1", "x2"], "protected_vars": ["a"], "target_var": "y", "protected_vars_binary": ["a"]}


__all__: List[str] = ["CREDIT_VARS", "make_credit_dataset", "make_smoke_dataset", "smoke_vars"]
