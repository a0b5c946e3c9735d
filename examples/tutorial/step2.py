"""Step 2: Tracking Files and Writing Functions.

A file target stores a path and tracks the file's contents, so editing
data/measurements.csv makes the targets that read it outdated. Plain
functions become targets with the ``pipeline.target()`` decorator; their
parameter names are their dependencies.

Try:

    pipewright run examples/tutorial/step2.py
    pipewright outdated examples/tutorial/step2.py
"""

import csv
from pathlib import Path

import pipewright as pw

DATA = Path(__file__).parent / "data" / "measurements.csv"

pipeline = pw.Pipeline("step2")

# The command returns the path; the store records a hash of the file
pipeline.add(pw.target("measurements", repr(str(DATA)), format="file"))


@pipeline.target()
def clean(measurements: str) -> list[tuple[float, float]]:
    """Rows with a positive load."""
    with Path(measurements).open(newline="") as f:
        rows = [(float(row["load"]), float(row["extension"])) for row in csv.DictReader(f)]
    return [(load, extension) for load, extension in rows if load > 0]


@pipeline.target()
def stiffness(clean: list[tuple[float, float]]) -> float:
    """Least-squares slope through the origin, in N/mm."""
    return round(sum(x * x for x, _ in clean) / sum(x * y for x, y in clean), 4)
