"""End-to-end tests of the Pipeline surface."""

from pathlib import Path

import pytest

from pipewright import (
    CycleError,
    ManifestEntry,
    NotFoundError,
    Pipeline,
    Settings,
    StorageFormat,
    TargetState,
    TargetStatus,
    read_target,
    target,
)


def parse_csv(path: str) -> list[list[int]]:
    lines = Path(path).read_text().strip().splitlines()
    return [[int(cell) for cell in line.split(",")] for line in lines[1:]]


@pytest.fixture
def csv_file(tmp_path: Path) -> Path:
    path = tmp_path / "a.csv"
    path.write_text("x,y\n1,2\n3,4\n")
    return path


def make_pipeline(tmp_path: Path, csv_file: Path, **kwargs: object) -> Pipeline:
    pipeline = Pipeline(
        "analysis",
        store=tmp_path / "store",
        namespace={"parse_csv": parse_csv, "data_path": str(csv_file)},
        **kwargs,  # type: ignore[arg-type]
    )
    pipeline.add(
        target("raw", "data_path", format="file"),
        target("clean", "[row for row in parse_csv(raw) if all(v > 0 for v in row)]"),
        target("model", "sum(y for _, y in clean) / sum(x for x, _ in clean)"),
        target("plot2", "'plot of ' + str(list(range(3)))"),
    )
    return pipeline


class TestScenario:
    """The raw/clean/model/plot2 pipeline across several runs."""

    def test_runs(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)

        first = pipeline.run()
        assert first.built == ["raw", "clean", "model", "plot2"]
        assert pipeline.read("model") == 1.5

        second = pipeline.run()
        assert second.built == []
        assert all(o.status == TargetStatus.CURRENT for o in second.outcomes)

        csv_file.write_text("x,y\n1,2\n3,4\n4,10\n")
        third = pipeline.run()
        assert third.built == ["raw", "clean", "model"]
        assert third.status_of("plot2") == TargetStatus.CURRENT
        assert pipeline.read("model") == 2.0


class TestPipelineRun:
    """Tests for Pipeline.run."""

    def test_idempotent(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        for _ in range(3):
            report = pipeline.run()
            assert report.counts()[TargetStatus.CURRENT] == 4

    def test_propagation(self, tmp_path: Path, csv_file: Path) -> None:
        make_pipeline(tmp_path, csv_file).run()

        changed = Pipeline(
            "analysis",
            store=tmp_path / "store",
            namespace={"parse_csv": parse_csv, "data_path": str(csv_file)},
        )
        changed.add(
            target("raw", "data_path", format="file"),
            target("clean", "[row for row in parse_csv(raw) if row[0] > 1]"),
            target("model", "sum(y for _, y in clean) / sum(x for x, _ in clean)"),
            target("plot2", "'plot of ' + str(list(range(3)))"),
        )
        report = changed.run()
        assert report.built == ["clean", "model"]
        assert report.status_of("raw") == TargetStatus.CURRENT
        assert report.status_of("plot2") == TargetStatus.CURRENT

    def test_restrict_to_names(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        report = pipeline.run(names=["clean"])
        assert [o.name for o in report.outcomes] == ["raw", "clean"]
        assert pipeline.outdated() == ["model", "plot2"]

    def test_graph_errors_abort_before_execution(self, tmp_path: Path) -> None:
        pipeline = Pipeline("cyclic", store=tmp_path / "store")
        pipeline.add(target("a", "b"), target("b", "a"))
        with pytest.raises(CycleError):
            pipeline.run()
        assert not (tmp_path / "store").exists()

    def test_decorator(self, tmp_path: Path) -> None:
        pipeline = Pipeline("decorated", store=tmp_path / "store")
        pipeline.add(target("numbers", "[1, 2, 3]"))

        @pipeline.target()
        def total(numbers):
            """Sum of the numbers."""
            return sum(numbers)

        @pipeline.target("doubled", format=StorageFormat.MEMORY)
        def double_total(total):
            return total * 2

        report = pipeline.run()
        assert report.built == ["numbers", "total", "doubled"]
        assert pipeline.read("doubled") == 12
        assert total([4]) == 4
        assert pipeline.targets[1].description == "Sum of the numbers."

    def test_source(self, tmp_path: Path) -> None:
        helpers = tmp_path / "helpers.py"
        helpers.write_text("def triple(x):\n    return 3 * x\n")
        pipeline = Pipeline("sourced", store=tmp_path / "store")
        pipeline.source(helpers)
        pipeline.add(target("value", "triple(5)"))
        pipeline.run()
        assert pipeline.read("value") == 15

    def test_settings_store(self, tmp_path: Path) -> None:
        pipeline = Pipeline("configured", settings=Settings(store=tmp_path / "custom"))
        pipeline.add(target("a", "1"))
        pipeline.run()
        assert (tmp_path / "custom" / "meta" / "a.json").is_file()


class TestPipelineInspection:
    """Tests for manifest, outdated and read."""

    def test_manifest(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        entries = pipeline.manifest()
        assert [e.name for e in entries] == ["raw", "clean", "model", "plot2"]
        clean = entries[1]
        assert isinstance(clean, ManifestEntry)
        assert clean.dependencies == ("raw",)
        assert clean.format == StorageFormat.MEMORY
        assert clean.state == TargetState.OUTDATED
        assert entries[0].format == StorageFormat.FILE

    def test_manifest_has_no_side_effects(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.manifest()
        pipeline.outdated()
        assert not (tmp_path / "store").exists()

    def test_manifest_to_dict(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        data = pipeline.manifest()[2].to_dict()
        assert data["dependencies"] == ["clean"]
        assert data["state"] == "current"
        assert "reason" not in data

    def test_outdated(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        assert pipeline.outdated() == ["raw", "clean", "model", "plot2"]
        pipeline.run()
        assert pipeline.outdated() == []

    def test_read_never_built(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        with pytest.raises(NotFoundError, match="model"):
            pipeline.read("model")

    def test_read_file_target_returns_path(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        assert pipeline.read("raw") == str(csv_file)

    def test_read_target_helper(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        assert read_target("model", store=tmp_path / "store") == 1.5


class TestPipelineStoreOperations:
    """Tests for clear, invalidate and destroy."""

    def test_clear_named_rebuilds_subgraph(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        assert pipeline.clear(["clean"]) == ["clean"]
        with pytest.raises(NotFoundError):
            pipeline.read("clean")
        report = pipeline.run()
        assert report.built == ["clean", "model"]

    def test_clear_all(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        pipeline.clear()
        assert pipeline.outdated() == ["raw", "clean", "model", "plot2"]
        # Tracked files are left alone
        assert csv_file.is_file()

    def test_invalidate(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        assert pipeline.invalidate(["model"]) == ["model"]
        assert pipeline.read("model") == 1.5
        assert pipeline.run().built == ["model"]

    def test_destroy(self, tmp_path: Path, csv_file: Path) -> None:
        pipeline = make_pipeline(tmp_path, csv_file)
        pipeline.run()
        pipeline.destroy()
        assert not (tmp_path / "store").exists()
        assert pipeline.run().built == ["raw", "clean", "model", "plot2"]
