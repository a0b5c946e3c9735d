"""Tests for target classification."""

from pathlib import Path

import pytest

from pipewright import (
    Scheduler,
    Settings,
    StorageFormat,
    TargetState,
    build_graph,
    classify,
    open_store,
    target,
)


def build_all(targets: list, root: Path, settings: Settings | None = None) -> None:
    settings = settings or Settings()
    graph = build_graph(targets)
    with open_store(root) as store:
        Scheduler(store, settings).run(graph, classify(graph, store, settings))


def states(targets: list, root: Path, settings: Settings | None = None) -> dict[str, TargetState]:
    settings = settings or Settings()
    graph = build_graph(targets)
    with open_store(root) as store:
        return dict(classify(graph, store, settings).states)


class TestClassify:
    """Tests for classify."""

    def test_everything_outdated_without_records(self, tmp_path: Path) -> None:
        targets = [target("a", "1"), target("b", "a + 1")]
        with open_store(tmp_path) as store:
            graph = build_graph(targets)
            classification = classify(graph, store, Settings())
        assert classification.pending == ["a", "b"]
        assert classification.reasons["a"] == "no previous record"

    def test_current_after_build(self, tmp_path: Path) -> None:
        targets = [target("a", "1"), target("b", "a + 1")]
        build_all(targets, tmp_path)
        assert states(targets, tmp_path) == {"a": TargetState.CURRENT, "b": TargetState.CURRENT}

    def test_command_change_propagates(self, tmp_path: Path) -> None:
        build_all([target("a", "1"), target("b", "a + 1"), target("c", "2")], tmp_path)
        result = states([target("a", "10"), target("b", "a + 1"), target("c", "2")], tmp_path)
        assert result == {
            "a": TargetState.OUTDATED,
            "b": TargetState.OUTDATED,
            "c": TargetState.CURRENT,
        }

    def test_dependency_set_change(self, tmp_path: Path) -> None:
        build_all([target("a", "1"), target("b", "2"), target("c", "3", deps=["a"])], tmp_path)
        result = states([target("a", "1"), target("b", "2"), target("c", "3", deps=["a", "b"])], tmp_path)
        assert result["c"] == TargetState.OUTDATED

    def test_format_change(self, tmp_path: Path) -> None:
        data = tmp_path / "a.txt"
        data.write_text("x")
        literal = repr(str(data))
        build_all([target("a", literal)], tmp_path / "store")
        result = states([target("a", literal, format="file")], tmp_path / "store")
        assert result["a"] == TargetState.OUTDATED

    def test_seed_change(self, tmp_path: Path) -> None:
        build_all([target("a", "1")], tmp_path)
        assert states([target("a", "1")], tmp_path, Settings(seed=7))["a"] == TargetState.OUTDATED
        assert states([target("a", "1", seed=3)], tmp_path)["a"] == TargetState.OUTDATED

    def test_cleared_object_is_outdated(self, tmp_path: Path) -> None:
        targets = [target("a", "1")]
        build_all(targets, tmp_path)
        with open_store(tmp_path) as store:
            store.objects.remove("a")
        assert states(targets, tmp_path)["a"] == TargetState.OUTDATED

    def test_errored_previously(self, tmp_path: Path) -> None:
        targets = [target("a", "1 / 0"), target("b", "a + 1")]
        build_all(targets, tmp_path)
        with open_store(tmp_path) as store:
            classification = classify(build_graph(targets), store, Settings())
        assert classification["a"] == TargetState.ERRORED_PREVIOUSLY
        assert "ZeroDivisionError" in classification.reasons["a"]
        # Never built, so no record
        assert classification["b"] == TargetState.OUTDATED

    def test_corrupt_record_is_outdated(self, tmp_path: Path) -> None:
        targets = [target("a", "1")]
        build_all(targets, tmp_path)
        (tmp_path / "meta" / "a.json").write_text("garbage")
        assert states(targets, tmp_path)["a"] == TargetState.OUTDATED


class TestFileTracking:
    """Tests for file-tracked targets."""

    @pytest.fixture
    def data(self, tmp_path: Path) -> Path:
        path = tmp_path / "a.csv"
        path.write_text("1,2,3\n")
        return path

    def test_unchanged_file_is_current(self, tmp_path: Path, data: Path) -> None:
        targets = [target("raw", repr(str(data)), format=StorageFormat.FILE)]
        build_all(targets, tmp_path / "store")
        assert states(targets, tmp_path / "store")["raw"] == TargetState.CURRENT

    def test_edited_file_is_outdated(self, tmp_path: Path, data: Path) -> None:
        targets = [target("raw", repr(str(data)), format="file"), target("n", lambda raw: len(Path(raw).read_text()))]
        build_all(targets, tmp_path / "store")
        data.write_text("4,5,6,7\n")
        assert states(targets, tmp_path / "store") == {"raw": TargetState.OUTDATED, "n": TargetState.OUTDATED}

    def test_deleted_file_is_outdated(self, tmp_path: Path, data: Path) -> None:
        targets = [target("raw", repr(str(data)), format="file")]
        build_all(targets, tmp_path / "store")
        data.unlink()
        with open_store(tmp_path / "store") as store:
            classification = classify(build_graph(targets), store, Settings())
        assert classification["raw"] == TargetState.OUTDATED
        assert classification.reasons["raw"] == "tracked file missing"

    def test_file_default_format(self, tmp_path: Path, data: Path) -> None:
        settings = Settings(default_format="file")
        targets = [target("raw", repr(str(data)))]
        build_all(targets, tmp_path / "store", settings)
        data.write_text("changed")
        assert states(targets, tmp_path / "store", settings)["raw"] == TargetState.OUTDATED


class TestCues:
    """Tests for cue modes."""

    def test_always(self, tmp_path: Path) -> None:
        targets = [target("a", "1", cue="always"), target("b", "a")]
        build_all(targets, tmp_path)
        assert states(targets, tmp_path) == {"a": TargetState.OUTDATED, "b": TargetState.OUTDATED}

    def test_never(self, tmp_path: Path) -> None:
        build_all([target("a", "1", cue="never")], tmp_path)
        assert states([target("a", "2", cue="never")], tmp_path)["a"] == TargetState.CURRENT

    def test_never_without_record(self, tmp_path: Path) -> None:
        assert states([target("a", "1", cue="never")], tmp_path)["a"] == TargetState.OUTDATED

    def test_never_after_failure_is_errored_previously(self, tmp_path: Path) -> None:
        targets = [target("a", "1 / 0", cue="never"), target("b", "a + 1")]
        build_all(targets, tmp_path)
        assert states(targets, tmp_path) == {"a": TargetState.ERRORED_PREVIOUSLY, "b": TargetState.OUTDATED}

    def test_never_with_cleared_result_is_outdated(self, tmp_path: Path) -> None:
        targets = [target("a", "1", cue="never")]
        build_all(targets, tmp_path)
        with open_store(tmp_path) as store:
            store.objects.remove("a")
            classification = classify(build_graph(targets), store, Settings())
        assert classification["a"] == TargetState.OUTDATED
        assert classification.reasons["a"] == "stored result missing"
