# Demo data for local development: `python -m imitra.seed`
