import io
import os
import shutil
import stat
from contextlib import ExitStack

import pytest  # type: ignore

from command import (
    Context,
    ShellExit,
    cd,
    dirs,
    exec_,
    exit_,
    export,
    find_executable,
    is_valid_name,
    open_redirects,
    popd,
    pushd,
)
from geshl import DescriptorNode, FileNode, Redirect, RedirectType, SetVariables, parse, parse_redirect
from shellstring import ShellString


def make_tool(path, body="#!/bin/sh\necho tool\n"):
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def ctx_for(session, *args):
    return Context(session, list(args), stdout=io.StringIO(), stderr=io.StringIO())


class TestFindExecutable:
    def test_absolute_path(self, session):
        sh = shutil.which("sh")
        assert find_executable(sh, session) == sh

    def test_absolute_path_missing(self, session, sandbox):
        tmp_path, _ = sandbox
        assert find_executable(str(tmp_path / "nope"), session) is None

    def test_relative_path_uses_working_directory(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "bin").mkdir()
        make_tool(tmp_path / "bin" / "tool")
        found = find_executable("bin/tool", session)
        assert os.path.realpath(found) == os.path.realpath(tmp_path / "bin" / "tool")

    def test_path_is_searched_before_working_directory(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "bin").mkdir()
        on_path = make_tool(tmp_path / "bin" / "mytool")
        make_tool(tmp_path / "mytool")
        session.set_var("PATH", str(tmp_path / "bin"))
        assert find_executable("mytool", session) == str(on_path)

    def test_falls_back_to_working_directory(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "empty").mkdir()
        make_tool(tmp_path / "mytool")
        session.set_var("PATH", str(tmp_path / "empty"))
        assert find_executable("mytool", session) == os.path.join(session.cwd, "mytool")

    def test_non_executable_file_is_ignored(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "plain").write_text("data")
        session.set_var("PATH", "")
        assert find_executable("plain", session) is None

    def test_unknown(self, session):
        assert find_executable("definitely-not-a-command-xyz", session) is None


class TestBuiltins:
    def test_cd_too_many_arguments(self, session):
        ctx = ctx_for(session, "a", "b")
        assert cd(ctx) == 1
        assert "too many arguments" in ctx.stderr.getvalue()

    def test_pushd_requires_one_directory(self, session):
        ctx = ctx_for(session)
        assert pushd(ctx) == 1
        assert "usage" in ctx.stderr.getvalue()

    def test_failed_pushd_leaves_stack_alone(self, session):
        assert pushd(ctx_for(session, "nowhere")) == 1
        assert session.dir_stack == []

    def test_popd_on_empty_stack(self, session):
        ctx = ctx_for(session)
        assert popd(ctx) == 1
        assert "stack empty" in ctx.stderr.getvalue()

    def test_dirs_lists_most_recent_first(self, session):
        session.dir_stack[:] = ["/first", "/second"]
        ctx = ctx_for(session)
        assert dirs(ctx) == 0
        assert ctx.stdout.getvalue() == f"{session.cwd} /second /first\n"

    def test_export_lists_exported_variables(self, session):
        session.set_var("ZZZ", "last")
        session.export("ZZZ")
        session.set_var("LOCAL", "hidden")
        ctx = ctx_for(session)
        assert export(ctx) == 0
        lines = ctx.stdout.getvalue().splitlines()
        assert lines == sorted(lines)
        assert "export ZZZ=last" in lines
        assert not any(line.startswith("export LOCAL=") for line in lines)

    def test_export_rejects_bad_names(self, session):
        ctx = ctx_for(session, "1BAD=x", "GOOD=y")
        assert export(ctx) == 1
        assert "not a valid identifier: 1BAD" in ctx.stderr.getvalue()
        assert session.exported_env()["GOOD"] == "y"

    def test_export_unset_name_is_remembered(self, session):
        assert export(ctx_for(session, "LATER")) == 0
        session.set_var("LATER", "now")
        assert session.exported_env()["LATER"] == "now"

    @pytest.mark.parametrize("args,code", [((), 0), (("4",), 4), (("nope",), 255)])
    def test_exit(self, session, args, code):
        with pytest.raises(ShellExit) as e:
            exit_(ctx_for(session, *args))
        assert e.value.code == code

    def test_exec_without_command_is_a_no_op(self, session):
        assert exec_(ctx_for(session)) == 0

    def test_exec_unknown_command(self, session):
        ctx = ctx_for(session, "definitely-not-a-command-xyz")
        assert exec_(ctx) == 127


@pytest.mark.parametrize(
    "name,valid",
    [
        ("HOME", True),
        ("_x1", True),
        ("1x", False),
        ("a-b", False),
        ("", False),
        ("A B", False),
        ("\u00e9", False),
    ],
)
def test_is_valid_name(name, valid):
    assert is_valid_name(name) is valid


@pytest.mark.parametrize("name", ["HOME", "_x1", "1x", "a-b", ""])
def test_export_names_match_assignment_names(name):
    assert is_valid_name(name) is isinstance(parse(f"{name}=x"), SetVariables)


class TestOpenRedirects:
    def test_output_and_input_files(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "in.txt").write_text("data")
        redirects = [parse_redirect("<in.txt"), parse_redirect(">out.txt"), parse_redirect("2>>err.txt")]
        with ExitStack() as stack:
            streams = open_redirects(redirects, session, stack)
            assert streams.stdin.read() == b"data"
            streams.stdout.write(b"out")
            streams.stderr.write(b"err")
        assert (tmp_path / "out.txt").read_bytes() == b"out"
        assert (tmp_path / "err.txt").read_bytes() == b"err"

    def test_descriptor_duplication_follows_order(self, session, sandbox):
        redirects = [parse_redirect(">out.txt"), parse_redirect("2>&1")]
        with ExitStack() as stack:
            streams = open_redirects(redirects, session, stack)
            assert streams.stderr is streams.stdout

    def test_input_needs_a_file(self, session):
        r = Redirect(DescriptorNode(3), None, RedirectType.IN)
        with pytest.raises(ValueError):
            open_redirects([r], session, ExitStack())

    def test_input_only_into_stdin(self, session):
        r = Redirect(FileNode(ShellString.of("in.txt")), DescriptorNode(1), RedirectType.IN)
        with pytest.raises(ValueError):
            open_redirects([r], session, ExitStack())

    def test_output_needs_a_target(self, session):
        r = Redirect(None, None, RedirectType.OUT_TRUNCATE)
        with pytest.raises(ValueError, match="missing target"):
            open_redirects([r], session, ExitStack())

    def test_only_stdout_and_stderr_can_be_redirected(self, session):
        with pytest.raises(ValueError):
            open_redirects([parse_redirect("5>out.txt")], session, ExitStack())

    def test_unknown_descriptor_target(self, session):
        with pytest.raises(ValueError, match="unsupported"):
            open_redirects([parse_redirect(">&7")], session, ExitStack())

    def test_missing_input_file(self, session):
        with pytest.raises(OSError):
            open_redirects([parse_redirect("<missing.txt")], session, ExitStack())
