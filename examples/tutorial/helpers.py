"""Helper functions sourced into the step 3 pipeline."""

import csv
from pathlib import Path


def clean_rows(path: str) -> list[tuple[float, float]]:
    with Path(path).open(newline="") as f:
        rows = [(float(row["load"]), float(row["extension"])) for row in csv.DictReader(f)]
    return [(load, extension) for load, extension in rows if load > 0]


def fit_stiffness(rows: list[tuple[float, float]]) -> float:
    return round(sum(x * x for x, _ in rows) / sum(x * y for x, y in rows), 4)
