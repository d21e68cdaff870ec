import argparse
import io
import logging
import os
import sys
from pathlib import Path
from typing import NamedTuple

import pyperclip
from colorama import Fore, Style, just_fix_windows_console
from tqdm import tqdm

import utils
from utils import (
    CONFIG_FILENAMES,
    HIDDEN_FILE_MARKER,
    EXTENSION_SEPARATOR,
    MATCH_ALL,
    ConfigNotFoundError,
    InvalidConfigError,
    FilecatError,
    NoFilesFoundError,
    OutputWriteError,
    RootNotReadableError,
    build_run_config,
    count_lines,
    load_and_validate_config,
    read_file_text,
)


TREE_INDENT = "    "
TREE_BRANCH = "|- "
TREE_HEADER = "Directory Structure:\n==================="
CONTENTS_BANNER = (
    "The Source File Contents Are Listed Below, Organized by Extension Under "
    "the Respective Heading"
)
PATH_MARKER = "// "
NO_EXTENSION_LABEL = "NO EXTENSION"


class FileRecord(NamedTuple):
    path: str
    extension: str
    line_count: int


class TreeLine(NamedTuple):
    level: int
    label: str


class _SilentProgress:
    """Progress handler used when progress bars are disabled."""

    def __init__(self):
        self.n = 0

    def update(self, n=1):
        self.n += n

    def close(self):
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _progress_enabled():
    """Return ``True`` when progress bars should be displayed."""

    if logging.getLogger().getEffectiveLevel() <= logging.DEBUG:
        return False
    if os.getenv("CI"):
        return False
    return True


def _progress_bar(*, enabled=True, **kwargs):
    if not enabled:
        return _SilentProgress()
    return tqdm(**kwargs)


def file_extension(path):
    """Return the suffix of the base name starting at its last ``.``.

    Unlike :func:`os.path.splitext` a leading dot counts, so ``.bashrc``
    has the extension ``.bashrc``. Names without a dot yield ``''``.
    """
    name = os.path.basename(os.fspath(path))
    index = name.rfind(EXTENSION_SEPARATOR)
    if index < 0:
        return ""
    return name[index:]


class MatchPolicy:
    """Decide which directories are pruned and which files are selected.

    Parameters
    ----------
    excludes : sequence of str
        Substrings; a directory whose path contains any of them is skipped
        together with everything below it.
    extensions : tuple of str or MATCH_ALL
        Normalized extensions compared case-sensitively, or the
        :data:`utils.MATCH_ALL` sentinel which accepts every file whose
        name does not start with a dot.
    ignored_files : iterable of path-like, optional
        Files that never match, compared by real path. Used to keep the
        output artifact out of its own input.
    """

    def __init__(self, excludes, extensions, ignored_files=()):
        self.excludes = tuple(excludes)
        self.extensions = extensions
        self.ignored_files = frozenset(
            os.path.realpath(path) for path in ignored_files
        )

    @classmethod
    def from_config(cls, config):
        ignored = (config.output_file,) if config.output_file else ()
        return cls(config.excludes, config.extensions, ignored_files=ignored)

    @property
    def match_all(self):
        return self.extensions is MATCH_ALL

    def is_dir_excluded(self, path):
        path_str = os.fspath(path)
        return any(exclude in path_str for exclude in self.excludes)

    def is_file_match(self, path):
        if self.ignored_files and os.path.realpath(path) in self.ignored_files:
            return False
        if self.match_all:
            name = os.path.basename(os.fspath(path))
            return not name.startswith(HIDDEN_FILE_MARKER)
        return file_extension(path) in self.extensions

    def matched_extension(self, path):
        return file_extension(path)


def _list_dir(path):
    with os.scandir(path) as entries:
        return sorted(entries, key=lambda entry: entry.name)


def walk_tree(root, policy, visitor, progress=None):
    """Depth-first traversal of ``root`` shared by every consumer.

    ``visitor`` must provide ``on_directory(path, level)`` and
    ``on_file(path, level)``. The root is reported at level 0 and is never
    tested for exclusion. Entries are visited in name order and each one
    ticks ``progress`` once. Excluded directories are pruned without being
    listed and only files accepted by ``policy`` reach ``on_file``.

    A root that cannot be listed raises :class:`RootNotReadableError`. A
    subdirectory that cannot be listed is logged and skipped, which keeps
    every visitor seeing the same set of entries.
    """
    if progress is None:
        progress = _SilentProgress()
    root = os.fspath(root)
    try:
        entries = _list_dir(root)
    except OSError as exc:
        raise RootNotReadableError(
            f"Unable to read root folder '{root}': {exc}"
        ) from exc

    visitor.on_directory(root, 0)
    _walk_entries(root, entries, 1, policy, visitor, progress)


def _walk_entries(dir_path, entries, level, policy, visitor, progress):
    for entry in entries:
        progress.update(1)
        path = os.path.normpath(os.path.join(dir_path, entry.name))
        if entry.is_dir(follow_symlinks=False):
            if policy.is_dir_excluded(path):
                logging.debug("Skipping excluded folder: %s", path)
                continue
            try:
                children = _list_dir(path)
            except OSError as exc:
                logging.warning("Unable to read folder '%s': %s. Skipping.", path, exc)
                continue
            visitor.on_directory(path, level)
            _walk_entries(path, children, level + 1, policy, visitor, progress)
        elif entry.is_dir():
            # Symlinked directories are neither followed nor listed.
            logging.debug("Skipping symlinked folder: %s", path)
        elif policy.is_file_match(path):
            visitor.on_file(path, level)


class RecordCollector:
    """Visitor that builds a :class:`FileRecord` for every matched file."""

    def __init__(self, policy):
        self.policy = policy
        self.records = []

    def on_directory(self, path, level):
        return None

    def on_file(self, path, level):
        try:
            line_count = count_lines(path)
        except OSError as exc:
            logging.warning("Could not count lines in %s: %s", path, exc)
            return
        self.records.append(
            FileRecord(path, self.policy.matched_extension(path), line_count)
        )


class TreeCollector:
    """Visitor that records one :class:`TreeLine` per visited node."""

    def __init__(self):
        self.lines = []

    def on_directory(self, path, level):
        label = _root_label(path) if level == 0 else os.path.basename(path)
        self.lines.append(TreeLine(level, label))

    def on_file(self, path, level):
        self.lines.append(TreeLine(level, os.path.basename(path)))


def _root_label(root):
    name = os.path.basename(os.path.normpath(root))
    if name in ("", ".", ".."):
        name = Path(root).resolve().name or os.fspath(root)
    return name


def find_files(root, policy, progress=None):
    """Return a :class:`FileRecord` for every matching file, in discovery order."""
    collector = RecordCollector(policy)
    walk_tree(root, policy, collector, progress=progress)
    return collector.records


def format_tree_lines(lines):
    rendered = []
    for line in lines:
        if line.level == 0:
            rendered.append(line.label)
        else:
            rendered.append(f"{TREE_INDENT * line.level}{TREE_BRANCH}{line.label}")
    return "\n".join(rendered)


def render_tree(root, policy):
    collector = TreeCollector()
    walk_tree(root, policy, collector)
    return format_tree_lines(collector.lines)


def generate_directory_tree(root, excludes, extensions, ignored_files=()):
    """Render the directories and matching files below ``root`` as text."""
    return render_tree(root, MatchPolicy(excludes, extensions, ignored_files))


def sort_records(records):
    """Order records by extension, then by path."""
    return sorted(records, key=lambda record: (record.extension, record.path))


def _group_heading(extension):
    label = extension.upper() if extension else NO_EXTENSION_LABEL
    return f"\n{label} Files:\n{'=' * (len(label) + 7)}\n\n"


def write_combined(records, config, out, progress=None):
    """Write the combined artifact for ``records`` to the text stream ``out``.

    The directory tree is rendered again from ``config`` rather than derived
    from ``records``. Every file is read from disk at this point; a file
    that cannot be read is logged and left out. Group headings precede the
    first written file of each extension.

    Returns
    -------
    int
        The number of files whose content was written.
    """
    if progress is None:
        progress = _SilentProgress()

    tree = render_tree(config.root, MatchPolicy.from_config(config))
    out.write(f"{TREE_HEADER}\n{tree}\n\n{CONTENTS_BANNER}\n")

    current_extension = None
    written = 0
    for record in sort_records(records):
        progress.update(1)
        try:
            content = read_file_text(record.path)
        except OSError as exc:
            logging.warning("Could not read file %s: %s", record.path, exc)
            continue

        if record.extension != current_extension:
            current_extension = record.extension
            out.write(_group_heading(current_extension))

        out.write(f"{PATH_MARKER}{record.path}\n{content}\n\n")
        written += 1
    return written


def generate_content(records, config, progress=None):
    """Return the combined artifact as a string."""
    buffer = io.StringIO()
    write_combined(records, config, buffer, progress=progress)
    return buffer.getvalue()


def combine_files(records, config, progress=None):
    """Write the combined artifact to ``config.output_file``.

    The whole document is rendered before the destination is opened, so a
    failure while reading sources never leaves a truncated artifact behind.
    Raises :class:`OutputWriteError` when the destination cannot be created
    or written.
    """
    buffer = io.StringIO()
    written = write_combined(records, config, buffer, progress=progress)
    try:
        with open(config.output_file, 'w', encoding='utf-8', newline='') as outfile:
            outfile.write(buffer.getvalue())
    except OSError as exc:
        raise OutputWriteError(
            f"failed to write output file '{config.output_file}': {exc}"
        ) from exc
    return written


def copy_to_clipboard(text):
    """Place ``text`` on the clipboard; return ``False`` on failure."""
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as exc:
        logging.error("Error copying to clipboard: %s", exc)
        return False
    return True


def copy_file_to_clipboard(file_path):
    try:
        content = read_file_text(file_path)
    except OSError as exc:
        logging.error("Failed to read %s for clipboard: %s", file_path, exc)
        return False
    return copy_to_clipboard(content)


def _color_enabled(stream):
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _style(text, color):
    if not _color_enabled(sys.stdout):
        return text
    return f"{color}{Style.BRIGHT}{text}{Style.RESET_ALL}"


class _ColorFormatter(logging.Formatter):
    """Formatter that colors warnings yellow and errors red."""

    LEVEL_COLORS = {
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED,
    }

    def __init__(self, fmt=None, use_color=True):
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record):
        message = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        if not self.use_color or color is None:
            return message
        return f"{color}{message}{Style.RESET_ALL}"


def _describe_extensions(extensions):
    if extensions is MATCH_ALL:
        return "all files"
    return ", ".join(extensions)


def run(config, *, show_progress=True):
    """Execute one invocation described by ``config``.

    Returns a stats mapping. Fatal conditions raise a
    :class:`utils.FilecatError` subclass.
    """
    progress_enabled = show_progress and _progress_enabled()

    print(_style(f"Searching for {_describe_extensions(config.extensions)}", Fore.CYAN))
    print(_style(f"Excluding directories: {', '.join(config.excludes)}", Fore.CYAN))

    policy = MatchPolicy.from_config(config)
    discovery_bar = _progress_bar(
        enabled=progress_enabled, desc="Searching files", unit="entry", leave=False
    )
    try:
        records = find_files(config.root, policy, progress=discovery_bar)
    finally:
        discovery_bar.close()

    if not records:
        raise NoFilesFoundError(
            f"no files found with extensions: {_describe_extensions(config.extensions)}"
        )

    total_lines = sum(record.line_count for record in records)
    stats = {
        'total_files': len(records),
        'total_lines': total_lines,
        'written_files': 0,
        'copied': False,
    }

    if config.show_tree:
        tree = render_tree(config.root, policy)
        print("\nThis is the Directory Structure:")
        print("=====================")
        print(tree)

    if config.count_lines:
        print(_style(
            f"Found {len(records)} files with a total of {total_lines} lines of code",
            Fore.GREEN,
        ))

    if config.no_combine:
        if config.copy_output:
            combine_bar = _progress_bar(
                enabled=progress_enabled,
                total=len(records),
                desc="Processing files",
                unit="file",
            )
            try:
                content = generate_content(records, config, progress=combine_bar)
            finally:
                combine_bar.close()
            stats['copied'] = copy_to_clipboard(content)
            if stats['copied']:
                print(_style("Content copied to clipboard", Fore.GREEN))
        return stats

    combine_bar = _progress_bar(
        enabled=progress_enabled,
        total=len(records),
        desc="Combining files",
        unit="file",
    )
    try:
        stats['written_files'] = combine_files(records, config, progress=combine_bar)
    finally:
        combine_bar.close()

    if config.copy_output:
        stats['copied'] = copy_file_to_clipboard(config.output_file)
        if stats['copied']:
            print(_style("Content copied to clipboard", Fore.GREEN))

    skipped = len(records) - stats['written_files']
    if skipped:
        logging.warning("Skipped %d unreadable files while combining.", skipped)
    print(_style(
        f"Combined {stats['written_files']} files into {config.output_file} "
        f"with a total of {total_lines} lines of code.",
        Fore.GREEN,
    ))
    return stats


def _find_config_file(explicit_path):
    if explicit_path:
        return explicit_path
    for candidate in CONFIG_FILENAMES:
        if Path(candidate).is_file():
            logging.info("Auto-discovered config file: %s", candidate)
            return candidate
    return None


def _resolve_run_config(args, file_config):
    """Merge command line flags over the config file values."""
    if file_config is None:
        file_config = utils.DEFAULT_CONFIG
    search = file_config['search']
    output = file_config['output']

    def pick(flag_value, config_value):
        return config_value if flag_value is None else flag_value

    excludes = list(args.exclude.split(",")) if args.exclude else []
    config_excludes = search.get('excludes') or []
    if isinstance(config_excludes, str):
        config_excludes = config_excludes.split(",")

    return build_run_config(
        root=pick(args.root, search.get('root')),
        extensions=pick(args.ext, search.get('extensions')),
        excludes=excludes + list(config_excludes),
        output_file=pick(args.out, output.get('file')),
        show_tree=pick(args.tree, output.get('tree')),
        count_lines=pick(args.count, output.get('count')),
        no_combine=pick(args.no_combine, not output.get('combine', True)),
        copy_output=pick(args.copy, output.get('copy')),
    )


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="filecat",
        description=(
            "Combine source files into one document, generate directory trees "
            "and count lines of code."
        ),
        epilog="""examples:
  # Combine all .go files in the current directory into combined_files.txt
  filecat -e go

  # Combine all .java files from a directory, with tree view, into a custom file
  filecat -e java -r path/to/project/src -t -o combined_java.txt

  # Only count lines of code for .js files, without combining
  filecat -e js -r ./web/scripts -c --no-combine

  # Combine all .py files, show directory tree, and copy to clipboard
  filecat -e py -t -y

  # Exclude specific directories when searching for .cpp files
  filecat -e cpp -x "tests,vendor,third_party"
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    search_group = parser.add_argument_group("Search")
    search_group.add_argument(
        "-e", "--ext",
        help="File extension(s) to search for (comma-separated, no dots). Use 'none' to match all files.",
    )
    search_group.add_argument(
        "-x", "--exclude",
        help=(
            "Directories to exclude (comma-separated substrings). "
            "Defaults: " + ", ".join(utils.DEFAULT_EXCLUDES)
        ),
    )
    search_group.add_argument(
        "-r", "--root",
        help="Root directory to start search from (default: '.').",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "-o", "--out",
        help=f"Output file name (default: '{utils.DEFAULT_OUTPUT_FILENAME}').",
    )
    output_group.add_argument(
        "-c", "--count",
        action="store_true",
        default=None,
        help="Count lines of code and display the total.",
    )
    output_group.add_argument(
        "--no-combine",
        action="store_true",
        default=None,
        help="Do not combine files into an output file (useful with -c to only count lines).",
    )
    output_group.add_argument(
        "-t", "--tree",
        action="store_true",
        default=None,
        help="Show directory tree of matching files.",
    )
    output_group.add_argument(
        "-y", "--copy",
        action="store_true",
        default=None,
        help="Copy output contents to the clipboard.",
    )

    runtime_group = parser.add_argument_group("Runtime Options")
    runtime_group.add_argument(
        "--config",
        help=f"YAML settings file (default: auto-discover {' or '.join(CONFIG_FILENAMES)}).",
    )
    runtime_group.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars.",
    )
    runtime_group.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show extra details to help solve problems.",
    )
    return parser


def main(argv=None):
    """Main function to parse arguments and run the tool."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Configure logging before the config file is read so its messages show.
    prelim_level = logging.DEBUG if args.verbose else logging.INFO
    just_fix_windows_console()
    handler = logging.StreamHandler()
    handler.setFormatter(_ColorFormatter(
        '%(levelname)s: %(message)s', use_color=_color_enabled(sys.stderr)
    ))
    logging.basicConfig(level=prelim_level, handlers=[handler])

    file_config = None
    config_path = _find_config_file(args.config)
    try:
        if config_path:
            file_config = load_and_validate_config(config_path)
        config = _resolve_run_config(args, file_config)
    except ConfigNotFoundError:
        logging.error(
            "Could not find the configuration file '%s'. "
            "Check the filename and your current working directory: %s",
            config_path,
            Path.cwd(),
        )
        sys.exit(1)
    except InvalidConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        logging.debug("Configuration validation traceback:", exc_info=True)
        sys.exit(1)

    # -v always wins over the config file's level.
    if not args.verbose and file_config is not None:
        level_str = file_config['logging']['level']
        logging.getLogger().setLevel(getattr(logging, level_str.upper(), logging.INFO))

    try:
        run(config, show_progress=not args.no_progress)
    except RootNotReadableError as exc:
        logging.error("Error finding files: %s", exc)
        sys.exit(1)
    except OutputWriteError as exc:
        logging.error("Error combining files: %s", exc)
        sys.exit(1)
    except FilecatError as exc:
        logging.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
