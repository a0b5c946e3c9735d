"""Step 3: Failures, Seeds and Reports.

A target that fails does not stop unrelated targets: its dependents are
reported as errored upstream. With ``error="substitute-default"`` the
failure is recorded and a default value is stored instead, so dependents
still run.

Targets that need randomness call ``pw.target_rng()``, which is seeded per
target. The seed is part of the fingerprint, so results are reproducible.

Finally, a render target turns a document into a report. The
``read_target`` calls in its code blocks make it depend on ``stiffness``
and ``clean``.

Try:

    pipewright run examples/tutorial/step3.py
    pipewright manifest examples/tutorial/step3.py
    pipewright read noisy_sample examples/tutorial/step3.py
"""

from pathlib import Path
from typing import Any

import pipewright as pw

HERE = Path(__file__).parent

pipeline = pw.Pipeline("step3", settings=pw.Settings(worker_concurrency=2, seed=2024))
# Makes clean_rows and fit_stiffness available to expression commands
pipeline.source(HERE / "helpers.py")


class PlaceholderRenderer:
    """Fills ``{{name}}`` placeholders with target values."""

    name = "placeholder"

    def render(self, document: Path, output: Path | None, inputs: dict[str, Any]) -> Path:
        output = output or document.with_suffix(".txt")
        text = document.read_text()
        for key, value in inputs.items():
            text = text.replace("{{" + key + "}}", str(value))
        output.write_text(text)
        return output


@pipeline.target()
def noisy_sample() -> list[float]:
    rng = pw.target_rng()
    return [round(rng.gauss(0.0, 0.1), 3) for _ in range(5)]


# Fails on every run; the default value is stored instead
pipeline.add(pw.target("calibration_offset", "1 / 0", error="substitute-default"))

pipeline.add(
    pw.target("clean", "clean_rows(measurements)"),
    pw.target("stiffness", "fit_stiffness(clean)"),
    pw.target("measurements", repr(str(HERE / "data" / "measurements.csv")), format="file"),
    pw.render_target("report", HERE / "report.md", PlaceholderRenderer(), output=HERE / "report.txt"),
)
