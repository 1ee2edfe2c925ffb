"""oaf - git with friendlier defaults, trial merges and branch pipelines."""

__version__ = "0.1.0"
