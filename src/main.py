"""Main entry point for the kanbin terminal client.

`kanbin open <key>` starts the interactive board; see `kanbin --help` for
the one-shot board and task commands.
"""
from cli import kanbin


def main():
    kanbin(prog_name="kanbin")

if __name__ == "__main__":
    main()
