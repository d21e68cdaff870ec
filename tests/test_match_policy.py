import os

import pytest

from conftest import write_files
from filecat import MatchPolicy, file_extension, find_files, generate_directory_tree
from utils import DEFAULT_EXCLUDES, MATCH_ALL


@pytest.mark.parametrize(
    "name, expected",
    [
        ("main.go", ".go"),
        ("archive.tar.gz", ".gz"),
        ("Makefile", ""),
        (".hidden", ".hidden"),
        ("trailing.", "."),
        ("dir.d/README", ""),
    ],
)
def test_file_extension(name, expected):
    assert file_extension(name) == expected


def test_dir_excluded_when_substring_appears_anywhere():
    policy = MatchPolicy(DEFAULT_EXCLUDES, (".go",))

    assert policy.is_dir_excluded("proj/node_modules")
    assert policy.is_dir_excluded("proj/src/.git")
    # Substring match, not segment aware.
    assert policy.is_dir_excluded("proj/mybuild_tools")
    assert policy.is_dir_excluded("proj/distribution")
    assert not policy.is_dir_excluded("proj/src")


def test_dir_excluded_accepts_path_objects(tmp_path):
    policy = MatchPolicy(("vendor",), (".go",))
    assert policy.is_dir_excluded(tmp_path / "vendor")


def test_file_match_is_exact_and_case_sensitive():
    policy = MatchPolicy((), (".go", ".py"))

    assert policy.is_file_match("proj/a.go")
    assert policy.is_file_match("proj/b.py")
    assert not policy.is_file_match("proj/A.GO")
    assert not policy.is_file_match("proj/a.golang")
    assert not policy.is_file_match("proj/go")


def test_file_match_ignores_directory_names():
    policy = MatchPolicy((), (".go",))
    assert not policy.is_file_match("proj/pkg.go/readme")


def test_match_all_skips_only_hidden_files():
    policy = MatchPolicy((), MATCH_ALL)

    assert policy.match_all
    assert policy.is_file_match("proj/visible.md")
    assert policy.is_file_match("proj/visible2")
    assert policy.is_file_match("proj/.config/settings.json")
    assert not policy.is_file_match("proj/.hidden")
    assert not policy.is_file_match("proj/sub/.env")


def test_hidden_file_matches_when_its_extension_is_requested():
    policy = MatchPolicy((), (".gitignore",))
    assert policy.is_file_match("proj/.gitignore")


def test_matched_extension_is_empty_for_extensionless_files():
    policy = MatchPolicy((), MATCH_ALL)
    assert policy.matched_extension("proj/LICENSE") == ""
    assert policy.matched_extension("proj/notes.md") == ".md"


def test_ignored_files_never_match(project, monkeypatch):
    write_files(project, {"combined_files.txt": "old\n", "notes.txt": "n\n"})
    policy = MatchPolicy((), (".txt",), ignored_files=["proj/combined_files.txt"])

    assert not policy.is_file_match(os.path.join("proj", "combined_files.txt"))
    assert policy.is_file_match(os.path.join("proj", "notes.txt"))

    # Compared by real path, so a different spelling is still ignored.
    monkeypatch.chdir(project)
    assert not policy.is_file_match("combined_files.txt")


def _tree_files(tree):
    return sorted(
        line.strip()[len("|- "):]
        for line in tree.splitlines()[1:]
        if "." in line.strip()[len("|- "):]
    )


@pytest.mark.parametrize(
    "extensions, excludes",
    [
        ((".go",), DEFAULT_EXCLUDES),
        ((".go", ".md"), ("vendor",) + DEFAULT_EXCLUDES),
        ((".txt",), ()),
        ((".go",), ("o",)),
    ],
)
def test_walker_and_tree_agree_on_matching_files(project, extensions, excludes):
    write_files(project, {
        "a.go": "a\n",
        "b.md": "b\n",
        "c.txt": "c\n",
        "src/d.go": "d\n",
        "src/e.md": "e\n",
        "src/deep/f.go": "f\n",
        "vendor/g.go": "g\n",
        "node_modules/h.go": "h\n",
        "mybuild/i.txt": "i\n",
        "docs/j.txt": "j\n",
    })
    policy = MatchPolicy(excludes, extensions)

    walked = sorted(os.path.basename(r.path) for r in find_files(project, policy))
    tree = generate_directory_tree(project, excludes, extensions)

    assert walked == _tree_files(tree)


def test_walker_and_tree_agree_in_match_all_mode(project):
    write_files(project, {
        ".hidden": "x\n",
        "visible.md": "y\n",
        "visible2": "z\n",
        "sub/.env": "SECRET=1\n",
        "sub/run.sh": "echo\n",
    })
    policy = MatchPolicy(DEFAULT_EXCLUDES, MATCH_ALL)

    walked = sorted(os.path.basename(r.path) for r in find_files(project, policy))
    tree = generate_directory_tree(project, DEFAULT_EXCLUDES, MATCH_ALL)
    listed = sorted(
        line.strip()[len("|- "):]
        for line in tree.splitlines()[1:]
        if line.strip() != "|- sub"
    )

    assert walked == ["run.sh", "visible.md", "visible2"]
    assert listed == walked
