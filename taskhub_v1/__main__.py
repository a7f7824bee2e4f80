"""Entry point for python -m taskhub_v1."""

from taskhub_v1.cli import app

if __name__ == "__main__":
    app()
