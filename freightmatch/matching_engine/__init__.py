"""Load/carrier matching engine: filtering, scoring, ranking and match commits."""
