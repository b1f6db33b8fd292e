"""
Tests for ModuleScanner discovery
"""

from pathlib import Path

from chainreactor.services.module_scanner import ModuleScanner, stage_id_for


class TestScan:
    """Tests for scan()"""

    def test_finds_scripts_sorted_by_name(self, tmp_path, make_module):
        """Test: every directory holding the script becomes a stage"""
        make_module("zeta")
        make_module("alpha")
        make_module("group/Beta")

        stages = ModuleScanner().scan(tmp_path)
        assert [s.display_name for s in stages] == ["alpha", "Beta", "zeta"]
        alpha = stages[0]
        assert alpha.id == stage_id_for(tmp_path / "alpha")
        assert alpha.command == str((tmp_path / "alpha" / "all_build.sh").resolve())
        assert alpha.timeout_seconds == 300

    def test_skips_hidden_and_vendor_dirs(self, tmp_path, make_module):
        """Test: hidden directories and node_modules are not scanned"""
        make_module("app")
        make_module(".cache/mod")
        make_module("node_modules/pkg")
        stages = ModuleScanner().scan(tmp_path)
        assert [s.display_name for s in stages] == ["app"]

    def test_custom_script_name(self, tmp_path, make_module):
        """Test: the script name is configurable"""
        make_module("a", script_name="build.sh")
        make_module("b")
        stages = ModuleScanner(script_name="build.sh").scan(tmp_path)
        assert [s.display_name for s in stages] == ["a"]

    def test_manual_projects_and_removed(self, tmp_path, make_module):
        """Test: manual projects are merged, removed ids filtered"""
        make_module("a")
        make_module("b")
        manual = tmp_path / "elsewhere"
        manual.mkdir()

        stages = ModuleScanner().scan(
            tmp_path,
            manual_projects=[str(manual), str(tmp_path / "a")],
            removed_ids={stage_id_for(tmp_path / "b")}
        )
        names = [s.display_name for s in stages]
        assert names == ["a", "elsewhere"]
        by_name = {s.display_name: s for s in stages}
        assert by_name["elsewhere"].command == "./all_build.sh"
        # discovered script wins over the duplicate manual entry
        assert by_name["a"].command.endswith("/a/all_build.sh")

    def test_missing_root(self, tmp_path):
        """Test: a missing root yields no stages"""
        assert ModuleScanner().scan(tmp_path / "nope") == []


class TestStageId:
    """Tests for stage_id_for()"""

    def test_canonical_path(self, tmp_path):
        """Test: equivalent spellings map to the same id"""
        (tmp_path / "m").mkdir()
        assert stage_id_for(tmp_path / "m") == stage_id_for(f"{tmp_path}/x/../m")
        assert Path(stage_id_for(tmp_path / "m")).is_absolute()
