import sys
from ws.common.logger import log
from ws.cli import cli

# Entry point for `python -m ws` and the `wearsync` script
def run() -> None:
    try:
        cli(standalone_mode=True)
    except SystemExit:
        raise
    except Exception:
        # Full stack trace, always
        log.exception("Uncaught exception in entrypoint, exiting")
        sys.exit(1)

if __name__ == "__main__":
    run()
