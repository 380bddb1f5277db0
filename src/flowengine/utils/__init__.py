"""Miscellaneous utilities used across modules."""

from .datasets import make_credit_dataset, make_smoke_dataset
from .seed import seed_everything

__all__ = ["make_credit_dataset", "make_smoke_dataset", "seed_everything"]
