"""Client-side services for the SPHERE pricing catalog and the H.A.R.V.E.Y. assistant."""

__version__ = "0.1.0"
