"""Allow ``python -m relay_worker``."""

from relay_worker.interfaces.cli.main import entry_point

if __name__ == "__main__":
    entry_point()
