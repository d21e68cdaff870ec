import copy
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import yaml


DEFAULT_OUTPUT_FILENAME = "combined_files.txt"
MATCH_ALL_KEYWORD = "none"
HIDDEN_FILE_MARKER = "."
EXTENSION_SEPARATOR = "."

DEFAULT_EXCLUDES = (".git", ".idea", ".vscode", "node_modules", "build", "dist")

CONFIG_FILENAMES = ("filecat.yml", "filecat.yaml")

DEFAULT_CONFIG = {
    'logging': {
        'level': 'INFO',
    },
    'search': {
        'root': '.',
        'extensions': [],
        'excludes': [],
    },
    'output': {
        'file': DEFAULT_OUTPUT_FILENAME,
        'tree': False,
        'count': False,
        'combine': True,
        'copy': False,
    },
}

_READ_CHUNK_SIZE = 64 * 1024


class _MatchAll:
    """Sentinel extension set that matches every non-hidden file."""

    def __repr__(self):
        return "MATCH_ALL"


MATCH_ALL = _MatchAll()


class ConfigNotFoundError(FileNotFoundError):
    """Raised when the configuration file cannot be found."""


class InvalidConfigError(Exception):
    """Raised when the configuration (file or flags) is invalid."""


class FilecatError(Exception):
    """Base class for errors that abort a run."""


class RootNotReadableError(FilecatError):
    """Raised when the root directory cannot be listed."""


class NoFilesFoundError(FilecatError):
    """Raised when no file matched the configured extensions."""


class OutputWriteError(FilecatError):
    """Raised when the output artifact cannot be created or written."""


@dataclass(frozen=True)
class RunConfig:
    """Resolved inputs for a single invocation."""

    root: str
    extensions: object
    excludes: Tuple[str, ...]
    output_file: Optional[str] = DEFAULT_OUTPUT_FILENAME
    show_tree: bool = False
    count_lines: bool = False
    no_combine: bool = False
    copy_output: bool = False

    @property
    def match_all(self):
        return self.extensions is MATCH_ALL


def normalize_extension(ext):
    """Return ``ext`` with a single leading separator (``go`` -> ``.go``)."""
    ext = ext.strip()
    if not ext or ext.startswith(EXTENSION_SEPARATOR):
        return ext
    return EXTENSION_SEPARATOR + ext


def parse_extensions(value):
    """Turn a comma separated string (or a list) into an extension set.

    ``none`` selects :data:`MATCH_ALL`. Empty items are dropped and
    duplicates collapse onto their first occurrence. Raises
    :class:`InvalidConfigError` when nothing usable is left.
    """
    if value is MATCH_ALL:
        return MATCH_ALL
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value or ())
    if not items or items == [""]:
        raise InvalidConfigError(
            "no file extensions specified. Use -e/--ext to specify extensions "
            "or use -e none to match all files"
        )
    if (
        len(items) == 1
        and isinstance(items[0], str)
        and items[0].strip() == MATCH_ALL_KEYWORD
    ):
        return MATCH_ALL

    extensions = []
    for item in items:
        if not isinstance(item, str):
            raise InvalidConfigError(
                f"File extensions must be strings, but got: {type(item).__name__}"
            )
        ext = normalize_extension(item)
        if ext and ext not in extensions:
            extensions.append(ext)

    if not extensions:
        raise InvalidConfigError(
            "no valid file extensions specified. Use -e/--ext to specify extensions "
            "or use -e none to match all files"
        )
    return tuple(extensions)


def build_exclude_set(user_excludes=None, defaults=DEFAULT_EXCLUDES):
    """Return the user supplied substrings followed by ``defaults``."""
    if user_excludes is None:
        user_excludes = ()
    elif isinstance(user_excludes, str):
        user_excludes = user_excludes.split(",")

    excludes = []
    for item in (*user_excludes, *defaults):
        if not isinstance(item, str):
            raise InvalidConfigError(
                f"Exclude entries must be strings, but got: {type(item).__name__}"
            )
        # An empty substring would match every path.
        if item and item not in excludes:
            excludes.append(item)
    return tuple(excludes)


def build_run_config(
    root=".",
    extensions=None,
    excludes=None,
    output_file=DEFAULT_OUTPUT_FILENAME,
    *,
    show_tree=False,
    count_lines=False,
    no_combine=False,
    copy_output=False,
    default_excludes=DEFAULT_EXCLUDES,
):
    """Validate raw inputs and return a :class:`RunConfig`."""
    if not isinstance(root, str) or not root:
        raise InvalidConfigError("'search.root' must be a non-empty string")
    if output_file is not None and not isinstance(output_file, str):
        raise InvalidConfigError("'output.file' must be a string or null")
    if not no_combine and not output_file:
        raise InvalidConfigError(
            "'output.file' must be set unless --no-combine is used."
        )

    return RunConfig(
        root=root,
        extensions=parse_extensions(extensions),
        excludes=build_exclude_set(excludes, defaults=default_excludes),
        output_file=output_file,
        show_tree=bool(show_tree),
        count_lines=bool(count_lines),
        no_combine=bool(no_combine),
        copy_output=bool(copy_output),
    )


def load_yaml_config(config_file_path):
    """Load a YAML configuration file with basic error handling."""
    logging.info("Loading configuration from: %s", config_file_path)
    try:
        with open(config_file_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
            if config is None:
                raise ValueError("Configuration file is empty or invalid.")
            if not isinstance(config, dict):
                raise ValueError("Configuration file must contain a mapping.")
            return config
    except FileNotFoundError as e:
        raise ConfigNotFoundError(
            f"Configuration file not found at '{config_file_path}'."
        ) from e
    except yaml.YAMLError as e:
        mark = getattr(e, 'problem_mark', None)
        location = ""
        if mark:
            location = f" at line {mark.line + 1}, column {mark.column + 1}"

        problem = getattr(e, 'problem', None) or str(e)
        context = getattr(e, 'context', None)
        details = f"{context}: {problem}" if context else problem
        raise InvalidConfigError(
            f"Error parsing YAML file{location}: {details}"
        ) from e
    except ValueError as e:
        raise InvalidConfigError(str(e)) from e


def _apply_defaults(cfg, defs):
    for key, value in defs.items():
        if isinstance(value, dict):
            node = cfg.setdefault(key, {})
            if node is None:
                node = cfg[key] = {}
            if isinstance(node, dict):
                _apply_defaults(node, value)
        else:
            cfg.setdefault(key, value)


def validate_config(config):
    """Check section and value types after defaults were merged in."""
    for section in DEFAULT_CONFIG:
        if not isinstance(config.get(section), dict):
            raise InvalidConfigError(f"'{section}' section must be a dictionary")

    level = config['logging'].get('level')
    if not isinstance(level, str) or not isinstance(
        getattr(logging, level.upper(), None), int
    ):
        raise InvalidConfigError(f"'logging.level' is not a valid level: {level!r}")

    search = config['search']
    if not isinstance(search.get('root'), str):
        raise InvalidConfigError("'search.root' must be a string")
    for key in ('extensions', 'excludes'):
        value = search.get(key)
        if value is None:
            search[key] = []
        elif not isinstance(value, (str, list)):
            raise InvalidConfigError(
                f"'search.{key}' must be a list or a comma separated string"
            )

    output = config['output']
    for key in ('tree', 'count', 'combine', 'copy'):
        if not isinstance(output.get(key), bool):
            raise InvalidConfigError(f"'output.{key}' must be a boolean value")
    if output.get('file') is not None and not isinstance(output['file'], str):
        raise InvalidConfigError("'output.file' must be a string or null")
    return config


def load_and_validate_config(config_file_path, defaults=DEFAULT_CONFIG):
    """Load ``config_file_path`` and merge ``defaults`` into it recursively."""
    config = load_yaml_config(config_file_path)
    if defaults:
        _apply_defaults(config, copy.deepcopy(defaults))
    return validate_config(config)


def count_lines(file_path):
    """Return the number of lines in ``file_path``.

    Every newline terminates a line and a non-empty tail without a final
    newline counts as one more. An empty file has zero lines. ``OSError``
    propagates to the caller.
    """
    count = 0
    last = b""
    with open(file_path, 'rb') as f:
        while True:
            chunk = f.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            count += chunk.count(b"\n")
            last = chunk[-1:]
    if last and last != b"\n":
        count += 1
    return count


def read_file_text(file_path):
    """Return the text of ``file_path`` exactly as stored.

    Bytes are decoded as UTF-8 with replacement characters for anything
    undecodable; line endings are left alone.
    """
    with open(file_path, 'r', encoding='utf-8', errors='replace', newline='') as f:
        return f.read()
