"""
Entry point for the chat client.
"""
from .cli import app


def main():
    """Launch the terminal chat client.

    Side Effects:
        - Parses command line arguments via typer
        - Starts the interactive client
    """
    app()


if __name__ == "__main__":
    main()
