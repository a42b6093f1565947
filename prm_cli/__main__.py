"""console script entrypoint for the prm CLI."""


def run() -> int:
    from .app import app

    app(prog_name="prm")
    return 0


def main() -> int:
    """Console entrypoint used by setuptools script hooks."""
    return run()


if __name__ == "__main__":
    raise SystemExit(run())
