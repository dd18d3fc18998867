"""Tests for config.py, atomicfile.py, logging_config.py and the CLI."""

import json

import pytest


class TestConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, tmp_path):
        """A missing override file yields the defaults."""
        from brain.config import DEFAULTS, load_config

        config = load_config(tmp_path / "absent.yaml")

        assert config == DEFAULTS
        assert config is not DEFAULTS

    def test_yaml_override(self, tmp_path):
        """Known keys are overridden; everything else keeps its default."""
        from brain.config import load_config

        path = tmp_path / "brain.yaml"
        path.write_text("engine:\n  max_pain: 2\ncheckpoint:\n  early: 4\n")

        config = load_config(path)

        assert config["engine"]["max_pain"] == 2
        assert config["engine"]["max_wins"] == 3
        assert config["checkpoint"]["early"] == 4

    def test_unknown_keys_ignored(self, tmp_path):
        """Unknown sections and keys are dropped."""
        from brain.config import load_config

        path = tmp_path / "brain.yaml"
        path.write_text("engine:\n  warp_speed: 9\nnonsense:\n  a: 1\n")

        config = load_config(path)

        assert "warp_speed" not in config["engine"]
        assert "nonsense" not in config

    def test_malformed_yaml_falls_back(self, tmp_path):
        """Unparseable YAML leaves the defaults in place."""
        from brain.config import DEFAULTS, load_config

        path = tmp_path / "brain.yaml"
        path.write_text("engine: [unclosed\n")

        assert load_config(path) == DEFAULTS

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        """BRAIN_CONFIG names the override file."""
        from brain.config import load_config

        path = tmp_path / "custom.yaml"
        path.write_text("gate:\n  dup_threshold: 0.9\n")
        monkeypatch.setenv("BRAIN_CONFIG", str(path))

        assert load_config()["gate"]["dup_threshold"] == 0.9

    def test_state_dir_follows_env(self, brain_dir):
        """BRAIN_PROJECT_DIR decides the state directory."""
        from brain.config import get_state_dir

        assert get_state_dir() == brain_dir


class TestAtomicFile:
    """Tests for the JSON document helpers."""

    def test_update_creates_and_returns(self, tmp_path):
        """The update function's result is returned and its edits persisted."""
        from brain.atomicfile import atomic_json_update

        path = tmp_path / "doc.json"

        def _add(data):
            data.setdefault("items", []).append(1)
            return len(data["items"])

        assert atomic_json_update(path, _add, {"items": []}) == 1
        assert atomic_json_update(path, _add, {"items": []}) == 2
        assert json.loads(path.read_text()) == {"items": [1, 1]}

    def test_corrupt_file_reads_as_default(self, tmp_path):
        """A half-written document never reaches callers."""
        from brain.atomicfile import read_json

        path = tmp_path / "doc.json"
        path.write_text("{not json")

        assert read_json(path, {"memories": []}) == {"memories": []}

    def test_corrupt_file_reset_on_update(self, tmp_path):
        """Updating a corrupt document starts again from the default."""
        from brain.atomicfile import atomic_json_update

        path = tmp_path / "doc.json"
        path.write_text("{not json")

        atomic_json_update(path, lambda data: data.update(ok=True), {"ok": False})

        assert json.loads(path.read_text()) == {"ok": True}

    def test_atomic_write_leaves_no_temp_files(self, tmp_path):
        """Only the document and its lock file remain after a write."""
        from brain.atomicfile import atomic_write

        atomic_write(tmp_path / "doc.json", {"a": 1})

        assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json", "doc.json.lock"]

    def test_waiting_update_sees_lock_holders_write(self, tmp_path):
        """An update blocked on the lock reads the document the holder renamed into place."""
        import threading

        from brain.atomicfile import atomic_json_update, atomic_write, locked_file

        path = tmp_path / "doc.json"
        atomic_write(path, {"n": 0})

        def _increment(data):
            data["n"] += 1

        with locked_file(path):
            worker = threading.Thread(target=atomic_json_update, args=(path, _increment, {"n": 0}))
            worker.start()
            tmp = tmp_path / "replacement.json"
            tmp.write_text(json.dumps({"n": 5}))
            tmp.rename(path)
        worker.join(timeout=5)

        assert json.loads(path.read_text()) == {"n": 6}


class TestLogging:
    """Tests for the log helpers."""

    def test_log_contents_tail(self, brain_dir):
        """The last lines come back in order without newlines."""
        from brain.logging_config import get_log_contents, get_log_file

        get_log_file().write_text("one\ntwo\nthree\n")

        assert get_log_contents(2) == ["two", "three"]

    def test_clear_log(self, brain_dir):
        """Clearing removes the log file."""
        from brain.logging_config import clear_log, get_log_contents, get_log_file

        get_log_file().write_text("line\n")
        clear_log()

        assert not get_log_file().exists()
        assert get_log_contents() == []

    def test_log_follows_ancestor_state_dir(self, tmp_path, monkeypatch):
        """Without BRAIN_PROJECT_DIR the log sits in the nearest ancestor .brain."""
        from brain.logging_config import get_log_file, set_log_dir

        monkeypatch.delenv("BRAIN_PROJECT_DIR", raising=False)
        (tmp_path / ".brain").mkdir()
        nested = tmp_path / "src" / "app"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        set_log_dir(None)

        assert get_log_file() == tmp_path / ".brain" / "brain.log"

    def test_store_root_owns_the_log(self, brain_dir, tmp_path):
        """A store with an explicit root writes its log beside its documents."""
        from brain.logging_config import get_log_file
        from brain.store import MemoryStore

        root = tmp_path / "elsewhere"
        MemoryStore(root).store_memory("fact", "Bug")

        assert get_log_file() == root / "brain.log"
        assert "Rejected memory 'Bug'" in (root / "brain.log").read_text()


class TestCli:
    """Tests for the command line front end."""

    def test_store_then_health(self, brain_dir, capsys):
        """store prints the gate outcome; health prints the report."""
        from brain.cli import main

        root = str(brain_dir)
        assert main(["--root", root, "store", "fact", "Flexbox gap unsupported in Safari 13",
                     "--content", "Safari 13 ignores gap on flex containers so spacing collapses",
                     "--tags", "css, safari"]) == 0
        stored = json.loads(capsys.readouterr().out)

        assert main(["--root", root, "health"]) == 0
        report = json.loads(capsys.readouterr().out)

        assert stored["status"] == "stored"
        assert stored["memory"]["tags"] == ["css", "safari"]
        assert report["memories"]["total"] == 1

    def test_health_text(self, brain_dir, capsys):
        """--text prints the human-readable report."""
        from brain.cli import main

        main(["--root", str(brain_dir), "health", "--text"])

        assert capsys.readouterr().out.startswith("Brain Health: F")

    def test_invalid_type_rejected_by_parser(self, brain_dir):
        """Unknown memory types never reach the store."""
        from brain.cli import main

        with pytest.raises(SystemExit):
            main(["--root", str(brain_dir), "store", "gossip", "Some title"])
