"""Example usage of ScopedFS with a JSON input file.

This script reads a scope root and a list of relative paths from a JSON
file, then reads each path through a locked scope with caching enabled,
twice, and prints the cache statistics.

JSON format:
    {
        "root": ".",
        "locked": true,
        "paths": ["README.md", "../../etc/hostname"],
        "encoding": "utf-8"
    }

Usage:
    cd ..
    python _examples/example.py [path_to_input.json]

Example:
    python example.py                 # Uses default example_in.json
    python example.py myinput.json    # Uses custom JSON file
"""

import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from scoped_fs import scope

class Colors:
    CYAN = "\033[36m"
    BRIGHT_YELLOW = "\033[93m"
    DIM = "\033[2m"
    RESET = "\033[0m"

logging.basicConfig(
    level=logging.DEBUG,
    format= Colors.DIM + '%(asctime)s [%(levelname)s] ◦ %(name)s ◦ %(message)s' + Colors.RESET,
    handlers=[
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


def load_input(input_path: Path) -> dict:
    """Load example parameters from a JSON file."""
    if not input_path.exists():
        return {"root": ".", "locked": True, "paths": ["_examples/example.py"], "encoding": "utf-8"}
    with open(input_path, "r", encoding="utf-8") as f:
        return json.load(f)


def main() -> None:
    default_input = Path(__file__).parent / "example_in.json"
    input_path = Path(sys.argv[1]) if len(sys.argv) > 1 else default_input
    params = load_input(input_path)

    fs = scope(str(Path(params.get("root", ".")).resolve()), locked=params.get("locked", True))
    encoding = params.get("encoding")

    for round_no in (1, 2):
        print(f"{Colors.BRIGHT_YELLOW}Round {round_no}{Colors.RESET}")
        for relpath in params.get("paths", []):
            resolved = fs.path_of(relpath)
            try:
                content = fs.read_file(relpath, encoding, use_cache=True)
            except OSError as e:
                logger.warning("Could not read %s (%s): %s", relpath, resolved, e)
                continue
            print(f"  {Colors.CYAN}{relpath}{Colors.RESET} -> {resolved} ({len(content)} chars)")

    print(json.dumps(fs.cache.get_stats().to_dict(), indent=2))


if __name__ == "__main__":
    main()
