import sys
import os
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import vfs_emulator as v
from vfs import VirtualFileSystem


@pytest.fixture
def dispatcher():
    tree = VirtualFileSystem.from_lines(['file;/a/b.txt;aGVsbG8=', 'dir;/a/c', 'dir;/empty;'])
    return v.Dispatcher(tree)


@pytest.fixture(params=[v.Mode.INTERACTIVE, v.Mode.SCRIPTED])
def mode(request):
    return request.param


def test_ls_lists_sorted_names(dispatcher, mode):
    assert dispatcher.dispatch('cd a', mode).ok
    result = dispatcher.dispatch('ls', mode)
    assert result.ok
    assert result.lines == ['b.txt', 'c/']


def test_ls_empty_directory(dispatcher, mode):
    dispatcher.dispatch('cd /empty', mode)
    assert dispatcher.dispatch('ls', mode).lines == ['(empty)']


def test_cd_missing_argument_fails(dispatcher, mode):
    result = dispatcher.dispatch('cd', mode)
    assert not result.ok
    assert result.lines == ['cd: missing argument']


def test_cd_unknown_directory_fails(dispatcher, mode):
    result = dispatcher.dispatch('cd nowhere', mode)
    assert not result.ok
    assert result.lines == ['cd: no such directory: nowhere']
    assert dispatcher.vfs.current_path() == '/'


def test_cd_round_trip_to_root(dispatcher, mode):
    for line in ['cd a', 'cd c', 'cd ..', 'cd ..']:
        assert dispatcher.dispatch(line, mode).ok
    assert dispatcher.vfs.current_path() == '/'


def test_cd_quoted_argument():
    tree = VirtualFileSystem.from_lines(['dir;/My Docs;'])
    d = v.Dispatcher(tree)
    assert d.dispatch('cd "My Docs"').ok
    assert tree.current_path() == '/My Docs'


def test_extra_cd_arguments_are_ignored(dispatcher):
    assert dispatcher.dispatch('cd a ignored').ok
    assert dispatcher.vfs.current_path() == '/a'


def test_unknown_command(dispatcher, mode):
    result = dispatcher.dispatch('pwd', mode)
    assert not result.ok
    assert result.lines == ['Command not found: pwd']


def test_verbs_are_case_sensitive(dispatcher):
    result = dispatcher.dispatch('LS')
    assert not result.ok
    assert result.lines == ['Command not found: LS']


def test_blank_input_is_noop(dispatcher, mode):
    result = dispatcher.dispatch('   ', mode)
    assert result.ok
    assert result.lines == []
    assert not result.exit_requested


def test_unterminated_quote_is_one_error_line(dispatcher, mode):
    result = dispatcher.dispatch('cd "unterminated', mode)
    assert not result.ok
    assert len(result.lines) == 1


def test_exit_interactive_requests_exit(dispatcher):
    result = dispatcher.dispatch('exit', v.Mode.INTERACTIVE)
    assert result.ok
    assert result.exit_requested


def test_exit_in_script_is_ignored(dispatcher):
    result = dispatcher.dispatch('exit', v.Mode.SCRIPTED)
    assert result.ok
    assert not result.exit_requested
    assert result.lines == ['exit command in script - ignoring']


def test_pre_tokenized_input(dispatcher):
    assert dispatcher.dispatch(['cd', 'a']).ok
    assert dispatcher.vfs.current_path() == '/a'


def test_without_vfs(mode):
    d = v.Dispatcher()
    ls = d.dispatch('ls', mode)
    cd = d.dispatch('cd /anything', mode)
    assert ls.ok and ls.lines == ['VFS not loaded']
    assert cd.ok and cd.lines == ['VFS not loaded']
    # cd without an argument is still fine: nothing is loaded
    assert d.dispatch('cd', mode).ok


def test_every_failure_is_one_line(dispatcher, mode):
    for line in ['cd', 'cd nowhere', 'bogus', 'ls "x']:
        result = dispatcher.dispatch(line, mode)
        assert not result.ok
        assert len(result.lines) == 1


def test_shell_errors_share_a_base_class():
    for cls in (v.ScriptReadFailure, v.UnterminatedQuote, v.NavigationFailure,
                v.MissingArgument, v.UnknownCommand):
        assert issubclass(cls, v.ShellError)
