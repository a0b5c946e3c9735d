"""Step 1: Your First Pipeline.

This example declares two targets as Python expressions. The second one
refers to the first by name, which is all it takes to declare the
dependency.

Run it with:

    pipewright run examples/tutorial/step1.py
    pipewright run examples/tutorial/step1.py   # nothing to do the second time
"""

import pipewright as pw

# Create a pipeline (a named set of targets bound to a store)
pipeline = pw.Pipeline("step1")

pipeline.add(
    # A target is a name and a command
    pw.target("loads", "[1.0, 2.0, 3.0, 4.0]"),
    # `loads` is referenced, so it becomes a dependency
    pw.target("total_load", "sum(loads)"),
)
