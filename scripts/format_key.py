"""
Format a Google Cloud service-account key file as .env lines for the container app.

The private key is written on one line with its newlines escaped as literal
\\n sequences; app_config.normalize_private_key turns them back.

Usage: python scripts/format_key.py path/to/service-account-key.json
(from an environment where the container app is installed, e.g. pip install -e .)
"""
import json
import sys
from pathlib import Path

from app_config import project_from_client_email


def format_env_lines(key_data):
    """Return the .env lines for a parsed service-account key."""
    client_email = key_data["client_email"]
    private_key = key_data["private_key"]
    project = key_data.get("project_id") or project_from_client_email(client_email) or ""

    escaped_key = private_key.replace("\n", "\\n")
    return [
        f"EARTH_ENGINE_CLIENT_EMAIL={client_email}",
        f'EARTH_ENGINE_PRIVATE_KEY="{escaped_key}"',
        f"EARTH_ENGINE_PROJECT={project}",
    ]


def main(argv):
    if not argv:
        print("Usage: python scripts/format_key.py path/to/service-account-key.json", file=sys.stderr)
        return 1

    key_path = Path(argv[0])
    try:
        key_data = json.loads(key_path.read_text(encoding="utf-8"))
        lines = format_env_lines(key_data)
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
        print(f"Error reading key file: {e}", file=sys.stderr)
        return 1

    print("\n=== Copy these values to your .env file ===\n")
    for line in lines:
        print(line)
    print("\n=== End of configuration ===\n")
    print("Note: Make sure to copy the entire private key including the quotes!")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
