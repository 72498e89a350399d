#!/usr/bin/env python3
"""Tool dispatcher tests against a temporary workspace."""

import pytest

from relay.llm.tag_parser import find_all_tags, parse_tool_tags
from relay.tools.approval import ProposalManager
from relay.tools.command_runner import ProcessManager
from relay.tools.dispatcher import ToolDispatcher
from relay.tools.errors import ToolErrorType
from relay.tools.file_ops import LocalFileService

from fakes import FakeImageService, FakeSearchService


class Reviewer:
    """Answers every proposal immediately with a fixed decision."""

    def __init__(self, status="accepted", content=None):
        self.status = status
        self.content = content
        self.seen = []
        self.manager = ProposalManager(on_proposal=self)

    def __call__(self, proposal):
        self.seen.append(proposal)
        self.manager.resolve_proposal(proposal.id, self.status, self.content)


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "app.py").write_text("def main():\n    print('hello')\n    return 0\n")
    return tmp_path


def _dispatcher(root, **kwargs):
    kwargs.setdefault("auto_apply", True)
    kwargs.setdefault("processes", ProcessManager(cwd=root))
    return ToolDispatcher(LocalFileService(root), **kwargs)


def _tag(text):
    tags = find_all_tags(text)
    assert len(tags) == 1
    return tags[0]


class TestFileTools:
    def test_write_file_creates_and_tracks(self, workspace):
        dispatcher = _dispatcher(workspace)
        result = dispatcher.dispatch(_tag('<write_file path="src/new.py">\nx = 1\n</write_file>'))

        assert result.success
        assert result.llm_output_text == "[System] Successfully wrote to src/new.py"
        assert "Created" in result.user_facing_text
        assert result.structured_action["new_file"] is True
        assert (workspace / "src" / "new.py").read_text() == "x = 1\n"
        assert dispatcher.working_set.get("src/new.py") == "x = 1\n"
        assert dispatcher.take_modified_files() == ["src/new.py"]
        assert dispatcher.take_modified_files() == []

    def test_replace_uses_fuzzy_match(self, workspace):
        dispatcher = _dispatcher(workspace)
        text = '<replace path="app.py"><old>print(\'hello\')\nreturn 0</old><new>    return 1\n</new></replace>'
        result = dispatcher.dispatch(_tag(text))

        assert result.llm_output_text == "[System] Successfully updated app.py"
        assert (workspace / "app.py").read_text() == "def main():\n    return 1\n"

    def test_replace_anchor_miss_is_error_result(self, workspace):
        dispatcher = _dispatcher(workspace)
        result = dispatcher.replace_in_file("app.py", "nothing like this", "x")

        assert not result.success
        assert result.llm_output_text.startswith("[Tool Error] replace: Could not find")
        assert "The <old> block must match the file exactly." in result.llm_output_text
        assert result.structured_action["error_type"] == ToolErrorType.ANCHOR_MISMATCH.value
        assert "return 0" in (workspace / "app.py").read_text()

    def test_patch_applies_all_hunks(self, workspace):
        dispatcher = _dispatcher(workspace)
        body = "<old>def main():</old><new>def run():</new>\n<old>return 0</old><new>return 2</new>"
        result = dispatcher.patch_file("app.py", body)

        assert result.llm_output_text == "[System] Applied 2 hunk(s) to app.py"
        assert (workspace / "app.py").read_text() == "def run():\n    print('hello')\n    return 2\n"

    def test_patch_is_all_or_nothing(self, workspace):
        dispatcher = _dispatcher(workspace)
        body = "<old>def main():</old><new>def run():</new>\n<old>missing()</old><new>x</new>"
        result = dispatcher.patch_file("app.py", body)

        assert not result.success
        assert "(hunk 2 of 2)" in result.llm_output_text
        assert (workspace / "app.py").read_text().startswith("def main():")
        assert dispatcher.take_modified_files() == []

    def test_patch_without_hunks_rewrites_file(self, workspace):
        dispatcher = _dispatcher(workspace)
        result = dispatcher.patch_file("app.py", "\nprint('rewritten')\n")
        assert result.llm_output_text == "[System] Successfully wrote to app.py"
        assert (workspace / "app.py").read_text() == "print('rewritten')\n"

    def test_patch_missing_file(self, workspace):
        result = _dispatcher(workspace).patch_file("nope.py", "<old>a</old><new>b</new>")
        assert result.structured_action["error_type"] == ToolErrorType.NOT_FOUND.value

    def test_read_file_updates_working_set(self, workspace):
        dispatcher = _dispatcher(workspace)
        result = dispatcher.dispatch(parse_tool_tags("<read_file>app.py</read_file>")["read_file"])

        assert result.llm_output_text.startswith("\n### FILE: app.py\ndef main():")
        assert result.llm_output_text.endswith("\n### END FILE\n")
        assert "app.py" in dispatcher.working_set
        assert dispatcher.take_modified_files() == []

    def test_read_missing_file(self, workspace):
        result = _dispatcher(workspace).read_file("ghost.py")
        assert not result.success
        assert "File not found: ghost.py" in result.llm_output_text

    def test_path_escape_becomes_error_result(self, workspace):
        result = _dispatcher(workspace).dispatch(_tag('<write_file path="../outside.txt">x</write_file>'))
        assert not result.success
        assert result.structured_action["error_type"] == ToolErrorType.PERMISSION_DENIED.value
        assert not (workspace.parent / "outside.txt").exists()


class TestApproval:
    def test_accepted_proposal_is_applied(self, workspace):
        reviewer = Reviewer("accepted")
        dispatcher = _dispatcher(workspace, auto_apply=False, proposals=reviewer.manager)
        dispatcher.write_file("notes.md", "# Notes\n")

        assert (workspace / "notes.md").read_text() == "# Notes\n"
        proposal = reviewer.seen[0]
        assert proposal.kind == "new"
        assert proposal.original == ""
        assert proposal.modified == "# Notes\n"

    def test_edited_proposal_content_wins(self, workspace):
        reviewer = Reviewer("accepted", content="edited by user\n")
        dispatcher = _dispatcher(workspace, auto_apply=False, proposals=reviewer.manager)
        dispatcher.write_file("app.py", "agent version\n")

        assert reviewer.seen[0].kind == "edit"
        assert (workspace / "app.py").read_text() == "edited by user\n"
        assert dispatcher.working_set.get("app.py") == "edited by user\n"

    def test_rejected_proposal_leaves_file(self, workspace):
        reviewer = Reviewer("rejected")
        dispatcher = _dispatcher(workspace, auto_apply=False, proposals=reviewer.manager)
        result = dispatcher.replace_in_file("app.py", "return 0", "return 9")

        assert result.llm_output_text == "[Tool Error] replace: User rejected the change to app.py"
        assert "return 0" in (workspace / "app.py").read_text()
        assert dispatcher.take_modified_files() == []

    def test_rejected_command_is_not_run(self, workspace):
        reviewer = Reviewer("rejected")
        dispatcher = _dispatcher(workspace, auto_apply=False, proposals=reviewer.manager)
        result = dispatcher.execute_command("touch created.txt")

        assert reviewer.seen[0].kind == "command"
        assert not result.success
        assert not (workspace / "created.txt").exists()


class TestReadOnly:
    @pytest.mark.parametrize("text", [
        '<write_file path="a.txt">x</write_file>',
        '<replace path="app.py"><old>a</old><new>b</new></replace>',
        '<patch path="app.py">x</patch>',
        "<execute_command>ls</execute_command>",
        '<generate_image prompt="cat" />',
        '<save_asset src="app.py" dest="copy.py" />',
    ])
    def test_mutating_tools_are_refused(self, workspace, text):
        dispatcher = _dispatcher(workspace, read_only=True)
        tag = _tag(text)
        result = dispatcher.dispatch(tag)

        assert result.llm_output_text.startswith(f"[Tool Error] {tag.kind}: not permitted in analysis mode")
        assert sorted(p.name for p in workspace.iterdir()) == ["app.py"]

    def test_reads_and_search_still_work(self, workspace):
        dispatcher = _dispatcher(workspace, read_only=True)
        assert dispatcher.read_file("app.py").success
        assert dispatcher.search("print").success


class TestCommands:
    def test_foreground_command(self, workspace):
        result = _dispatcher(workspace).dispatch(_tag("<execute_command>echo relay-ok</execute_command>"))
        assert result.success
        assert "Exit code: 0" in result.llm_output_text
        assert "STDOUT:\nrelay-ok" in result.llm_output_text

    def test_failing_command_is_unsuccessful_result(self, workspace):
        result = _dispatcher(workspace).execute_command("exit 3")
        assert not result.success
        assert "Exit code: 3" in result.llm_output_text

    def test_empty_command(self, workspace):
        result = _dispatcher(workspace).execute_command("   ")
        assert result.structured_action["error_type"] == ToolErrorType.VALIDATION_ERROR.value

    def test_background_command_and_stop(self, workspace):
        dispatcher = _dispatcher(workspace, processes=ProcessManager(cwd=workspace, grace_seconds=0.2))
        result = dispatcher.execute_command("sleep 5", background=True)

        assert result.success
        assert result.structured_action["background"] is True
        assert dispatcher.processes.active_pid == result.structured_action["pid"]
        assert dispatcher.stop_process().success
        assert not dispatcher.stop_process().success


class TestSearchAndAssets:
    def test_code_search(self, workspace):
        result = _dispatcher(workspace).dispatch(_tag('<search query="print" />'))
        assert "[Search] 1 match(es) for 'print':" in result.llm_output_text
        assert "app.py:2:     print('hello')" in result.llm_output_text

    def test_code_search_no_matches(self, workspace):
        result = _dispatcher(workspace).search("zzz_not_here")
        assert result.llm_output_text == "[Search] No matches for 'zzz_not_here'."

    def test_web_search_requires_service(self, workspace):
        result = _dispatcher(workspace).search("python docs", "web")
        assert result.llm_output_text == "[Tool Error] search: Search service is not configured"

        service = FakeSearchService()
        result = _dispatcher(workspace, search_service=service).dispatch(_tag('<search query="requests" type="docs" />'))
        assert result.success
        assert service.queries == [("requests", "docs")]
        assert "https://docs.example.com/api" in result.llm_output_text

    def test_image_tools_require_service(self, workspace):
        result = _dispatcher(workspace).generate_image("a fox")
        assert result.llm_output_text == "[Tool Error] generate_image: Image service is not configured"

    def test_generate_and_save_asset(self, workspace):
        images = FakeImageService(workspace)
        dispatcher = _dispatcher(workspace, image_service=images)

        generated = dispatcher.dispatch(_tag('<generate_image prompt="a fox" aspect_ratio="16:9" />'))
        assert generated.structured_action["path"] == ".relay/generated.png"

        saved = dispatcher.dispatch(_tag('<save_asset src=".relay/generated.png" dest="assets/fox.png" />'))
        assert saved.success
        assert (workspace / "assets" / "fox.png").read_bytes() == b"PNG"
        assert dispatcher.take_modified_files() == ["assets/fox.png"]

    def test_image_arguments_are_validated(self, workspace):
        images = FakeImageService(workspace)
        dispatcher = _dispatcher(workspace, image_service=images)

        assert not dispatcher.generate_image("a fox", "2:1").success
        assert not dispatcher.resize_image("img.png", 0, 10).success
        assert not dispatcher.resize_image("img.png", 10, 10, "bmp").success
        assert images.calls == []

        resized = dispatcher.dispatch(_tag('<resize_image path="img.png" width="64" height="64" format="webp" />'))
        assert resized.success
        assert images.calls == [("resize", "img.png", 64, 64, "webp")]


def test_execute_tools_runs_writes_reads_and_searches(workspace):
    dispatcher = _dispatcher(workspace)
    text = (
        'First <write_file path="b.txt">bee</write_file> then <read_file>app.py</read_file> '
        'and <execute_command>touch skipped.txt</execute_command>'
    )
    output = dispatcher.execute_tools(text)

    assert "Created `b.txt`" in output
    assert "Read `app.py`" in output
    assert not (workspace / "skipped.txt").exists()


def test_unknown_tool_kind(workspace):
    from relay.llm.tag_parser import ToolTag

    result = _dispatcher(workspace).dispatch(ToolTag(kind="teleport"))
    assert "unknown tool 'teleport'" in result.llm_output_text
